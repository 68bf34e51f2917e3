"""Single-shot copy review and guideline learning."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from adcopy_planner import prompts
from adcopy_planner.config import settings
from adcopy_planner.exceptions import InvalidInputError
from adcopy_planner.logging_config import get_logger
from adcopy_planner.parsing import parse_jsonish

if TYPE_CHECKING:
    from adcopy_planner.providers.base import TextProvider
    from adcopy_planner.storage import Advertiser

logger = get_logger(__name__)

_REVIEW_FAILED = "analysis failed"


async def review_copy(
    copy: str,
    media_type: str,
    provider: TextProvider,
    advertiser_name: str | None = None,
) -> dict[str, str]:
    """
    Returns good / bad / suggestion / revised. When the model's answer has no
    usable JSON, every field reads "analysis failed" and ``revised`` is the
    input copy.
    """
    if not (copy or "").strip():
        raise InvalidInputError("copy is required")
    text = await provider.complete(
        system=None,
        messages=[{"role": "user", "content": prompts.review_prompt(copy, media_type, advertiser_name)}],
        max_tokens=settings.review_video_max_tokens if media_type == "video" else settings.review_max_tokens,
    )
    data = parse_jsonish(text)
    if data is None:
        logger.warning("Review answer had no JSON object: %r", text[:200])
        return {"good": _REVIEW_FAILED, "bad": _REVIEW_FAILED, "suggestion": _REVIEW_FAILED, "revised": copy}
    return {
        "good": str(data.get("good", "")),
        "bad": str(data.get("bad", "")),
        "suggestion": str(data.get("suggestion", "")),
        "revised": str(data.get("revised", copy)),
    }


async def learn_guidelines(
    script: str,
    media_type: str,
    provider: TextProvider,
    advertiser: Advertiser | None = None,
) -> dict[str, Any]:
    """Extract guidelines, up to 5 appeals and cautions from a sample script or copy."""
    if not (script or "").strip():
        raise InvalidInputError("script is required")
    text = await provider.complete(
        system=None,
        messages=[{"role": "user", "content": prompts.learn_prompt(script, media_type, advertiser)}],
        max_tokens=settings.learn_max_tokens,
    )
    data = parse_jsonish(text) or {}
    if not data:
        logger.warning("Learn answer had no JSON object: %r", text[:200])
    appeals = data.get("appeals") or []
    if not isinstance(appeals, list):
        appeals = [appeals]
    return {
        "guidelines": str(data.get("guidelines", "") or ""),
        "appeals": [str(a).strip() for a in appeals if str(a).strip()][:5],
        "cautions": str(data.get("cautions", "") or ""),
    }
