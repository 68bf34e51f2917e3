"""
Streamed multi-batch variation generation.

A run fans out one streamed request per batch, re-parses each batch's
accumulated text after every fragment for a live preview, and merges the
final per-batch results in batch order once every batch has finished.
Batches fail independently: an error, timeout or cancellation only drops
that batch's records.
"""

from __future__ import annotations

import asyncio
import uuid
from contextlib import aclosing
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from functools import partial
from typing import TYPE_CHECKING, Any, AsyncGenerator, Callable, Sequence

from adcopy_planner import prompts
from adcopy_planner.config import settings
from adcopy_planner.conversation import ConversationSession, ConversationTurn, SeedArtifact
from adcopy_planner.exceptions import AdCopyError, InvalidInputError
from adcopy_planner.logging_config import get_logger
from adcopy_planner.parsing import (
    PlanIdea,
    VariationRecord,
    parse_copy_variations,
    parse_numbered_list,
    parse_script_variations,
    parse_video_scripts,
)
from adcopy_planner.streaming import decode_events, event_stream

if TYPE_CHECKING:
    from adcopy_planner.providers.base import TextProvider
    from adcopy_planner.storage import Advertiser, HistoryEntry, HistoryStore

logger = get_logger(__name__)

_PARSERS = {
    "script": parse_script_variations,
    "copy": parse_copy_variations,
}


@dataclass(frozen=True)
class BatchDescriptor:
    batch_index: int
    styles: tuple[str, str]

    @property
    def first_variation_number(self) -> int:
        return self.batch_index * settings.items_per_batch + 1


@dataclass
class BatchStreamState:
    batch_index: int
    accumulated_text: str = ""
    is_complete: bool = False
    error: str | None = None
    variations: list[VariationRecord] = field(default_factory=list)

    def feed(self, fragment: str, parse: Callable[[str], list[VariationRecord]]) -> None:
        self.accumulated_text += fragment
        self.variations = parse(self.accumulated_text)


@dataclass
class GenerationResult:
    variations: list[VariationRecord]
    batches: list[BatchStreamState]

    @property
    def errors(self) -> dict[int, str]:
        return {b.batch_index: b.error for b in self.batches if b.error is not None}

    @property
    def failed_batches(self) -> list[int]:
        return sorted(self.errors)

    def to_dict(self) -> dict[str, Any]:
        return {
            "variations": [asdict(v) for v in self.variations],
            "batches": [
                {
                    "batch_index": b.batch_index,
                    "complete": b.is_complete,
                    "error": b.error,
                    "count": len(b.variations) if b.error is None else 0,
                }
                for b in self.batches
            ],
        }


# (session, batch) -> byte stream of encoded events for that batch.
StreamFactory = Callable[[ConversationSession, BatchDescriptor], AsyncGenerator[bytes, None]]


def build_batches(count: int | None = None) -> list[BatchDescriptor]:
    n = settings.batch_count if count is None else count
    presets = prompts.STYLE_PRESETS
    return [BatchDescriptor(batch_index=i, styles=presets[i % len(presets)]) for i in range(n)]


def stream_batch(
    seed: SeedArtifact,
    conversation: Sequence[ConversationTurn],
    style_directives: tuple[str, str],
    batch_index: int,
    provider: TextProvider,
    grammar: str = "script",
) -> AsyncGenerator[bytes, None]:
    """Byte stream of ``{text}`` / ``{done}`` / ``{error}`` events for one batch."""
    directions = [t.text for t in conversation if t.role == "user"]
    final_prompt = prompts.batch_prompt(
        directions,
        style_directives,
        first_number=batch_index * settings.items_per_batch + 1,
        grammar=grammar,
    )
    messages = [t.to_message() for t in conversation] + [{"role": "user", "content": final_prompt}]
    deltas = provider.stream(
        system=prompts.chat_system_prompt(seed),
        messages=messages,
        max_tokens=settings.batch_max_tokens,
    )
    return event_stream(deltas, batch=batch_index)


def provider_stream_factory(provider: TextProvider, grammar: str = "script") -> StreamFactory:
    def factory(session: ConversationSession, batch: BatchDescriptor) -> AsyncGenerator[bytes, None]:
        if session.seed is None:
            raise InvalidInputError("no seed artifact")
        return stream_batch(session.seed, session.turns, batch.styles, batch.batch_index, provider, grammar)

    return factory


def merge_batches(states: Sequence[BatchStreamState]) -> list[VariationRecord]:
    merged: list[VariationRecord] = []
    for state in sorted(states, key=lambda s: s.batch_index):
        if state.error is not None:
            continue
        merged.extend(state.variations)
    return merged


async def _consume_batch(
    state: BatchStreamState,
    stream: AsyncGenerator[bytes, None],
    parse: Callable[[str], list[VariationRecord]],
    on_update: Callable[[BatchStreamState], None] | None,
) -> None:
    # The provider stream is closed on every exit, including errors and timeouts.
    async with aclosing(stream), aclosing(decode_events(stream)) as events:
        async for event in events:
            if event.error is not None:
                state.error = event.error
                logger.warning("Batch %d failed: %s", state.batch_index, event.error)
                return
            if event.text:
                state.feed(event.text, parse)
                if on_update is not None:
                    on_update(state)
            if event.done:
                break
    # A stream that ends without an explicit done event is complete as well.
    state.is_complete = True
    logger.debug("Batch %d complete with %d variation(s)", state.batch_index, len(state.variations))


async def _run_batch(
    state: BatchStreamState,
    session: ConversationSession,
    batch: BatchDescriptor,
    stream_factory: StreamFactory,
    parse: Callable[[str], list[VariationRecord]],
    timeout: float | None,
    on_update: Callable[[BatchStreamState], None] | None,
) -> None:
    try:
        stream = stream_factory(session, batch)
        if timeout:
            await asyncio.wait_for(_consume_batch(state, stream, parse, on_update), timeout)
        else:
            await _consume_batch(state, stream, parse, on_update)
    except asyncio.TimeoutError:
        state.error = f"timed out after {timeout:g}s"
        logger.warning("Batch %d %s", state.batch_index, state.error)
    except AdCopyError as exc:
        state.error = exc.message
        logger.warning("Batch %d failed: %s", state.batch_index, exc.message)


async def run_generation(
    session: ConversationSession,
    stream_factory: StreamFactory,
    *,
    grammar: str = "script",
    batches: Sequence[BatchDescriptor] | None = None,
    batch_timeout: float | None = None,
    cancel_event: asyncio.Event | None = None,
    on_update: Callable[[BatchStreamState], None] | None = None,
) -> GenerationResult | None:
    """
    Run every batch concurrently and merge their final parses.

    Returns None without doing anything while the session is not ready.
    ``batch_timeout`` falls back to ``settings.batch_timeout_s``; setting
    ``cancel_event`` cancels the batches still running.
    """
    if not session.can_generate:
        logger.info("Generation skipped: readiness %d%%", session.readiness)
        return None
    if grammar not in _PARSERS:
        raise InvalidInputError(f"unknown grammar '{grammar}'")

    batch_list = list(batches) if batches is not None else build_batches()
    timeout = settings.batch_timeout_s if batch_timeout is None else batch_timeout
    parse = partial(_PARSERS[grammar], limit=settings.items_per_batch)
    states = [BatchStreamState(batch_index=b.batch_index) for b in batch_list]

    logger.info("Starting generation run: %d batch(es), grammar=%s", len(batch_list), grammar)
    tasks = [
        asyncio.create_task(
            _run_batch(state, session, batch, stream_factory, parse, timeout, on_update),
            name=f"batch-{batch.batch_index}",
        )
        for batch, state in zip(batch_list, states)
    ]
    joined = asyncio.gather(*tasks, return_exceptions=True)

    try:
        if cancel_event is not None:
            waiter = asyncio.ensure_future(cancel_event.wait())
            try:
                await asyncio.wait({joined, waiter}, return_when=asyncio.FIRST_COMPLETED)
            finally:
                waiter.cancel()
            if not joined.done():
                logger.info("Generation run cancelled")
                for task in tasks:
                    task.cancel()
        outcomes = await joined
    except asyncio.CancelledError:
        for task in tasks:
            task.cancel()
        raise

    for state, outcome in zip(states, outcomes):
        if isinstance(outcome, asyncio.CancelledError):
            state.error = state.error or "cancelled"
        elif isinstance(outcome, BaseException):
            logger.error("Batch %d crashed", state.batch_index, exc_info=outcome)
            state.error = str(outcome) or type(outcome).__name__

    result = GenerationResult(variations=merge_batches(states), batches=states)
    logger.info(
        "Generation run finished: %d variation(s), failed batches=%s",
        len(result.variations),
        result.failed_batches,
    )
    return result


async def regenerate(
    session: ConversationSession,
    stream_factory: StreamFactory,
    feedback: str = "",
    **kwargs: Any,
) -> tuple[ConversationSession, GenerationResult | None]:
    """
    Run again with everything said so far, plus optional feedback on the
    previous results as one more user turn.
    """
    if feedback.strip():
        session = session.with_turn("user", feedback.strip())
    result = await run_generation(session, stream_factory, **kwargs)
    return session, result


def record_run(history: HistoryStore, session: ConversationSession, result: GenerationResult) -> HistoryEntry | None:
    """Snapshot a run into the history log; runs with no variations are not recorded."""
    from adcopy_planner.storage import HistoryEntry

    if not result.variations:
        return None
    entry = HistoryEntry(
        id=uuid.uuid4().hex[:12],
        timestamp=datetime.now(timezone.utc).isoformat(),
        seed_summary=session.seed.summary if session.seed else "",
        variations=[asdict(v) for v in result.variations],
        conversation=[asdict(t) for t in session.turns],
    )
    history.add(entry)
    return entry


async def generate_single_shot(
    base_copy: str,
    media_type: str,
    provider: TextProvider,
    advertiser: Advertiser | None = None,
) -> list[PlanIdea]:
    """Plain 6-variation flow with no conversation, returned as title/description pairs."""
    if not (base_copy or "").strip():
        raise InvalidInputError("base copy is required")
    prompt = prompts.single_shot_prompt(base_copy, media_type, prompts.advertiser_context(advertiser, media_type))
    text = await provider.complete(
        system=None,
        messages=[{"role": "user", "content": prompt}],
        max_tokens=settings.single_shot_max_tokens,
    )
    if media_type == "video":
        return parse_video_scripts(text)
    return parse_numbered_list(text)


def stream_plan_ideas(media_type: str, provider: TextProvider, advertiser_name: str | None = None) -> AsyncGenerator[bytes, None]:
    prompt = prompts.plan_ideas_prompt(media_type, advertiser_name)
    deltas = provider.stream(
        system=None,
        messages=[{"role": "user", "content": prompt}],
        max_tokens=settings.plan_max_tokens,
    )
    return event_stream(deltas)
