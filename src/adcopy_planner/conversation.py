"""
Conversation state for the variation assistant.

The session is an immutable value: every operation returns a new session,
so a failed turn leaves the caller's previous session untouched.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Literal, Sequence

from adcopy_planner import prompts
from adcopy_planner.config import settings
from adcopy_planner.exceptions import InvalidInputError
from adcopy_planner.logging_config import get_logger

if TYPE_CHECKING:
    from adcopy_planner.providers.base import TextProvider

logger = get_logger(__name__)

Role = Literal["user", "assistant"]

_OPTION_LINE_RE = re.compile(r"^[ \t]*([A-Z0-9])\.[ \t]*(.*)$", re.MULTILINE)
_MULTI_SELECT_MARKERS = ("multiple", "several", "여러 개", "복수")
_MULTI_SELECT_MIN_OPTIONS = 4


@dataclass(frozen=True)
class ConversationTurn:
    role: Role
    text: str
    options: tuple[str, ...] = ()

    def to_message(self) -> dict[str, str]:
        return {"role": self.role, "content": self.text}


@dataclass(frozen=True)
class SeedArtifact:
    kind: Literal["script", "image"]
    text: str  # the script itself, or the analysis of the image
    product_name: str = ""
    appeals: tuple[str, ...] = ()

    @property
    def summary(self) -> str:
        first = next((ln.strip() for ln in self.text.splitlines() if ln.strip()), "")
        return first[:80]


@dataclass(frozen=True)
class ChatReply:
    reply: str
    ready_to_generate: bool
    readiness: int
    options: tuple[str, ...]
    multi_select: bool


def readiness(turns: Sequence[ConversationTurn], seed_present: bool, steps: Sequence[int] | None = None) -> int:
    """
    Turn-count proxy for "enough direction to generate".

    0 without a seed; otherwise steps[u] for u user turns, and 100 once u
    runs past the table. With the default table: 10, 33, 66, then 100.
    """
    if not seed_present:
        return 0
    table = list(settings.readiness_steps if steps is None else steps)
    user_turns = sum(1 for t in turns if t.role == "user")
    if user_turns < len(table):
        return table[user_turns]
    return 100


def extract_options(text: str) -> list[str]:
    """
    Pull "A. choice" / "1. choice" lines out of an assistant reply.

    Fewer than two surviving options means there is no choice menu.
    """
    options: list[str] = []
    for m in _OPTION_LINE_RE.finditer(text or ""):
        label = m.group(2).strip()
        if 2 < len(label) < 100:
            options.append(label)
    if len(options) < 2:
        return []
    return options


def is_multi_select(text: str, options: Sequence[str]) -> bool:
    lowered = (text or "").lower()
    if any(marker in lowered for marker in _MULTI_SELECT_MARKERS):
        return True
    return len(options) > _MULTI_SELECT_MIN_OPTIONS


def opening_turn(seed: SeedArtifact) -> ConversationTurn:
    if seed.kind == "image":
        text = (
            "The image analysis is done!\n\n"
            "How would you like to vary this ad creative?\n\n"
            "For example:\n"
            '- "Retarget it to women in their twenties"\n'
            '- "Make the tone more humorous"\n'
            '- "Push the discount harder"\n\n'
            "Tell me the direction you have in mind."
        )
    else:
        text = (
            "I have the original script.\n\n"
            "How would you like to change it?\n\n"
            "A. Friendlier and more humorous\n"
            "B. Serious and trustworthy\n"
            "C. Emotional and warm\n"
            "D. Direct and intense"
        )
    return ConversationTurn(role="assistant", text=text, options=tuple(extract_options(text)))


@dataclass(frozen=True)
class ConversationSession:
    seed: SeedArtifact | None = None
    turns: tuple[ConversationTurn, ...] = field(default_factory=tuple)

    @property
    def readiness(self) -> int:
        return readiness(self.turns, self.seed is not None)

    @property
    def can_generate(self) -> bool:
        return self.readiness >= 100

    @property
    def user_directions(self) -> list[str]:
        return [t.text for t in self.turns if t.role == "user"]

    def messages(self) -> list[dict[str, str]]:
        return [t.to_message() for t in self.turns]

    def with_seed(self, seed: SeedArtifact, greet: bool = True) -> ConversationSession:
        # A new seed starts a new conversation.
        turns = (opening_turn(seed),) if greet else ()
        return ConversationSession(seed=seed, turns=turns)

    def with_turn(self, role: Role, text: str) -> ConversationSession:
        options = tuple(extract_options(text)) if role == "assistant" else ()
        turn = ConversationTurn(role=role, text=text, options=options)
        return replace(self, turns=self.turns + (turn,))

    def cleared(self) -> ConversationSession:
        return ConversationSession()


async def converse(
    session: ConversationSession,
    user_text: str,
    provider: TextProvider,
) -> tuple[ConversationSession, ChatReply]:
    """
    One non-final conversational turn.

    Upstream errors propagate; the caller keeps ``session`` and can retry
    the same turn.
    """
    if session.seed is None:
        raise InvalidInputError("load a script or analyze an image first")
    text = (user_text or "").strip()
    if not text:
        raise InvalidInputError("message is empty")

    messages = session.messages() + [{"role": "user", "content": text}]
    logger.info("Chat turn %d (readiness %d%%)", len(session.user_directions) + 1, session.readiness)
    reply = await provider.complete(
        system=prompts.chat_system_prompt(session.seed),
        messages=messages,
        max_tokens=settings.chat_max_tokens,
    )

    updated = session.with_turn("user", text).with_turn("assistant", reply)
    options = updated.turns[-1].options
    return updated, ChatReply(
        reply=reply,
        ready_to_generate=updated.can_generate,
        readiness=updated.readiness,
        options=options,
        multi_select=bool(options) and is_multi_select(reply, options),
    )
