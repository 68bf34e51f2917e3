from __future__ import annotations

from io import BytesIO
from typing import Any

from PIL import Image, UnidentifiedImageError

from adcopy_planner.config import settings
from adcopy_planner.exceptions import InvalidInputError, UpstreamAPIError
from adcopy_planner.logging_config import get_logger

logger = get_logger(__name__)

# Large uploads are downscaled before they are sent; the model does not need more.
_MAX_EDGE = 2048


def load_image(image_bytes: bytes) -> Image.Image:
    try:
        img = Image.open(BytesIO(image_bytes))
        img.load()
    except (UnidentifiedImageError, OSError) as exc:
        raise InvalidInputError(f"could not decode image: {exc}") from exc
    if max(img.size) > _MAX_EDGE:
        img.thumbnail((_MAX_EDGE, _MAX_EDGE))
    return img


class GeminiVisionProvider:
    name = "gemini"

    def __init__(self, api_key: str, model: str | None = None) -> None:
        # Imported lazily so the app can start without the dependency installed.
        from google import genai  # type: ignore

        self._genai = genai
        self.client = genai.Client(api_key=api_key)
        self.model = model or settings.gemini_vision_model

    async def describe_image(
        self,
        image_bytes: bytes,
        mime_type: str,
        instruction: str,
        max_tokens: int,
    ) -> str:
        """
        Single non-streamed call: instruction text plus one image. The
        google-genai SDK accepts PIL Images directly in ``contents``; the
        ``mime_type`` is only logged since PIL sniffs the format itself.
        """
        from google.genai import errors, types  # type: ignore

        image = load_image(image_bytes)
        contents: list[Any] = [instruction, image]
        logger.info("Vision request (%s, %dx%d)", mime_type, image.size[0], image.size[1])

        try:
            resp = await self.client.aio.models.generate_content(
                model=self.model,
                contents=contents,
                config=types.GenerateContentConfig(max_output_tokens=max_tokens),
            )
        except errors.APIError as exc:
            status = getattr(exc, "code", None)
            logger.error("Gemini request failed (status=%s): %s", status, exc)
            raise UpstreamAPIError(self.name, str(exc), status_code=status) from exc

        return getattr(resp, "text", "") or ""
