from __future__ import annotations

from typing import TYPE_CHECKING, Any, Sequence

from adcopy_planner import prompts
from adcopy_planner.config import settings
from adcopy_planner.conversation import SeedArtifact
from adcopy_planner.exceptions import UpstreamAPIError
from adcopy_planner.logging_config import get_logger
from adcopy_planner.parsing import parse_ocr

if TYPE_CHECKING:
    from adcopy_planner.providers.base import VisionProvider

logger = get_logger(__name__)


async def analyze_image_seed(
    image_bytes: bytes,
    mime_type: str,
    provider: VisionProvider,
    product_name: str = "",
    appeals: Sequence[str] = (),
) -> SeedArtifact:
    """Describe an ad image; the description becomes the seed of a conversation."""
    analysis = await provider.describe_image(
        image_bytes=image_bytes,
        mime_type=mime_type,
        instruction=prompts.IMAGE_ANALYSIS_INSTRUCTION,
        max_tokens=settings.analysis_max_tokens,
    )
    if not analysis.strip():
        raise UpstreamAPIError(provider.name, "empty image analysis")
    return SeedArtifact(kind="image", text=analysis.strip(), product_name=product_name, appeals=tuple(appeals))


async def extract_image_copy(image_bytes: bytes, mime_type: str, provider: VisionProvider) -> dict[str, Any]:
    text = await provider.describe_image(
        image_bytes=image_bytes,
        mime_type=mime_type,
        instruction=prompts.OCR_INSTRUCTION,
        max_tokens=settings.chat_max_tokens,
    )
    result = parse_ocr(text)
    logger.info("OCR: category=%r, %d copy line(s)", result["category"], len(result["copy"]))
    return result | {"raw_text": text}
