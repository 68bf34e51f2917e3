from __future__ import annotations

import base64
import binascii
import re
from typing import AsyncGenerator, Protocol

from adcopy_planner.exceptions import InvalidInputError

_DATA_URL_RE = re.compile(r"^data:([^;]+);base64,(.+)$", re.DOTALL)


class TextProvider(Protocol):
    name: str

    async def complete(
        self,
        system: str | None,
        messages: list[dict[str, str]],
        max_tokens: int,
    ) -> str: ...

    def stream(
        self,
        system: str | None,
        messages: list[dict[str, str]],
        max_tokens: int,
    ) -> AsyncGenerator[str, None]: ...


class VisionProvider(Protocol):
    name: str

    async def describe_image(
        self,
        image_bytes: bytes,
        mime_type: str,
        instruction: str,
        max_tokens: int,
    ) -> str: ...


def decode_data_url(value: str) -> tuple[bytes, str]:
    """
    Accept a ``data:<mime>;base64,<payload>`` URL or a bare base64 payload.
    Bare payloads are assumed to be JPEG.
    """
    payload = (value or "").strip()
    if not payload:
        raise InvalidInputError("image is required")
    mime_type = "image/jpeg"
    m = _DATA_URL_RE.match(payload)
    if m:
        mime_type, payload = m.group(1), m.group(2)
    try:
        return base64.b64decode(payload, validate=False), mime_type
    except (binascii.Error, ValueError) as exc:
        raise InvalidInputError(f"image is not valid base64: {exc}") from exc
