"""
Best-effort parsers for free-form model output.

Nothing here is a strict grammar: the model is asked to follow a format but
is not guaranteed to. Every parser accepts any string (including a partial
prefix of a streamed response) and yields fewer records instead of raising.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Union


@dataclass(frozen=True)
class ScriptVariation:
    body: str
    rationale: str


@dataclass(frozen=True)
class CopyVariation:
    main_text: str
    secondary_text: str
    rationale: str


@dataclass(frozen=True)
class PlanIdea:
    title: str
    description: str


VariationRecord = Union[ScriptVariation, CopyVariation]


_DELIMITER_RE = re.compile(r"^[ \t]*-{3,}[ \t]*$", re.MULTILINE)
_VARIATION_HEADER_RE = re.compile(r"\[\s*(?:Variation|베리에이션)\s*(\d+)\s*\]", re.IGNORECASE)
_CHANGE_POINT_MARKER_RE = re.compile(r"\[\s*(?:Change\s*Point|변경\s*포인트)\s*\]", re.IGNORECASE)
_COPY_BLOCK_SPLIT_RE = re.compile(
    r"\[\s*(?:Variation|베리에이션)\s*\d+\s*\]|^[ \t]*-{3,}[ \t]*$",
    re.IGNORECASE | re.MULTILINE,
)
_NUMBERED_LINE_RE = re.compile(r"^\d+\.\s*(.+?):\s*(.+)$")
_VIDEO_SCRIPT_SPLIT_RE = re.compile(r"-{3,}|\[\s*(?:Script|대본)\s*\d+\s*\]", re.IGNORECASE)
_NARRATION_RE = re.compile(r"(?:Narration|나레이션)\s*:\s*\"?([^\"\n]+)\"?", re.IGNORECASE)
_SCENE_PREFIX_RE = re.compile(r"Scene\s*\d+:?\s*", re.IGNORECASE)
_SRT_SEQUENCE_RE = re.compile(r"^\d+$")
_SRT_TIMECODE_RE = re.compile(r"^\d{2}:\d{2}:\d{2}")
_OCR_CATEGORY_RE = re.compile(r"\[\s*(?:Category|카테고리)\s*\]\s*([^\n\[]+)", re.IGNORECASE)
_OCR_COPY_RE = re.compile(r"\[\s*(?:Copy|카피)\s*\]\s*(.*)", re.IGNORECASE | re.DOTALL)

# Bare (header-less) script blocks shorter than this are treated as noise.
_MIN_BARE_BODY = 20
_TITLE_PREVIEW = 30


def _label_re(*labels: str) -> re.Pattern[str]:
    # Tolerates markdown bold around the label, e.g. "**Main Copy:** ...".
    alternatives = "|".join(labels)
    return re.compile(
        rf"^[ \t]*\**[ \t]*(?:{alternatives})[ \t]*\**[ \t]*:[ \t]*\**[ \t]*(.*\S)",
        re.IGNORECASE | re.MULTILINE,
    )


_MAIN_COPY_RE = _label_re(r"Main\s*Copy", r"메인\s*카피")
_SUB_COPY_RE = _label_re(r"Sub\s*Copy", r"서브\s*카피")
_CHANGE_POINT_RE = _label_re(r"Change\s*Point", r"변경\s*포인트")


def parse_script_variations(text: str, limit: int = 2) -> list[ScriptVariation]:
    """
    Parse "---"-delimited script blocks:

        ---
        [Variation 1]
        (script body, several lines)

        [Change Point] what changed
        ---

    When no block carries a header, a block is kept as a bare body if it is
    longer than 20 characters; once any header appears, header-less blocks
    (preambles, sign-offs) are dropped. Incomplete trailing blocks are skipped.
    """
    out: list[ScriptVariation] = []
    headed = _VARIATION_HEADER_RE.search(text or "") is not None
    for block in _DELIMITER_RE.split(text or ""):
        block = block.strip()
        if not block:
            continue

        header = _VARIATION_HEADER_RE.search(block)
        content = block[header.end() :] if header else block

        marker = _CHANGE_POINT_MARKER_RE.search(content)
        if marker:
            body = content[: marker.start()].strip()
            rationale = content[marker.end() :].strip()
        else:
            body = content.strip()
            rationale = ""

        if not body:
            continue
        if header is None and (headed or len(body) <= _MIN_BARE_BODY):
            continue

        out.append(ScriptVariation(body=body, rationale=rationale))
        if len(out) >= limit:
            break
    return out


def parse_copy_variations(text: str, limit: int = 2) -> list[CopyVariation]:
    """
    Parse copy blocks split by "[Variation n]" headers or "---" lines, each
    with "Main Copy:", "Sub Copy:" and "Change Point:" lines. A block is only
    kept when it has a main or a sub copy.
    """
    out: list[CopyVariation] = []
    for block in _COPY_BLOCK_SPLIT_RE.split(text or ""):
        if not block.strip():
            continue
        main = _MAIN_COPY_RE.search(block)
        sub = _SUB_COPY_RE.search(block)
        if not (main or sub):
            continue
        change = _CHANGE_POINT_RE.search(block)
        out.append(
            CopyVariation(
                main_text=main.group(1).strip() if main else "",
                secondary_text=sub.group(1).strip() if sub else "",
                rationale=change.group(1).strip() if change else "",
            )
        )
        if len(out) >= limit:
            break
    return out


def parse_numbered_list(text: str) -> list[PlanIdea]:
    """Keep "N. Title: Description" lines; everything else is dropped."""
    out: list[PlanIdea] = []
    for line in re.split(r"\r?\n", text or ""):
        m = _NUMBERED_LINE_RE.match(line.strip())
        if m:
            out.append(PlanIdea(title=m.group(1).strip(), description=m.group(2).strip()))
    return out


def parse_video_scripts(text: str) -> list[PlanIdea]:
    """
    Single-shot video scripts. The title is a short preview taken from the
    first narration line, or from the first line with its "Scene N:" prefix
    removed.
    """
    out: list[PlanIdea] = []
    for chunk in _VIDEO_SCRIPT_SPLIT_RE.split(text or ""):
        script = chunk.strip()
        if len(script) <= 10:
            continue
        narration = _NARRATION_RE.search(script)
        if narration:
            line = narration.group(1)
            title = line[:_TITLE_PREVIEW] + ("..." if len(line) > _TITLE_PREVIEW else "")
        else:
            first = next((ln for ln in script.splitlines() if ln.strip()), "")
            title = _SCENE_PREFIX_RE.sub("", first, count=1)[:_TITLE_PREVIEW] or f"Script {len(out) + 1}"
        out.append(PlanIdea(title=title, description=script))
    return out


def parse_srt(content: str) -> str:
    """Reduce an SRT subtitle file to its dialogue lines."""
    lines: list[str] = []
    for raw in (content or "").splitlines():
        line = raw.strip()
        if not line:
            continue
        if _SRT_SEQUENCE_RE.match(line):
            continue
        if _SRT_TIMECODE_RE.match(line):
            continue
        lines.append(line)
    return "\n".join(lines)


def parse_ocr(text: str) -> dict[str, Any]:
    """
    Split a "[Category] ... [Copy] ..." answer. Copy lines come back as a
    list; "No text" means an empty list.
    """
    category = ""
    copy_lines: list[str] = []
    m = _OCR_CATEGORY_RE.search(text or "")
    if m:
        category = m.group(1).strip()
    m = _OCR_COPY_RE.search(text or "")
    if m:
        copy_lines = [ln.strip() for ln in m.group(1).splitlines() if ln.strip()]
        if len(copy_lines) == 1 and copy_lines[0].lower().rstrip(".") in ("no text", "텍스트 없음"):
            copy_lines = []
    return {"category": category, "copy": copy_lines}


def strip_code_fences(text: str) -> str:
    s = text.strip()
    if s.startswith("```"):
        # Remove leading fence line
        first_nl = s.find("\n")
        if first_nl != -1:
            s = s[first_nl + 1 :]
        # Remove trailing fence
        if s.rstrip().endswith("```"):
            s = s.rstrip()[:-3]
    return s.strip()


def parse_jsonish(raw_text: str | None) -> dict[str, Any] | None:
    """Decode a JSON object from model output that may carry fences or prose around it."""
    if not raw_text:
        return None
    s = strip_code_fences(raw_text)
    try:
        data = json.loads(s)
    except json.JSONDecodeError:
        start = s.find("{")
        end = s.rfind("}")
        if start == -1 or end <= start:
            return None
        try:
            data = json.loads(s[start : end + 1])
        except json.JSONDecodeError:
            return None
    return data if isinstance(data, dict) else None
