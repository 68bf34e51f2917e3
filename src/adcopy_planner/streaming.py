"""
Server-sent-event framing for generation streams.

Every event is one ``data: <json>\\n\\n`` frame carrying ``{"text": ...}``,
``{"done": true}`` or ``{"error": ...}``, optionally tagged with the batch
index.
"""

from __future__ import annotations

import codecs
import json
from contextlib import aclosing
from dataclasses import dataclass
from typing import Any, AsyncGenerator, AsyncIterable

from adcopy_planner.exceptions import AdCopyError
from adcopy_planner.logging_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class StreamEvent:
    text: str | None = None
    done: bool = False
    error: str | None = None
    batch: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.text is not None:
            data["text"] = self.text
        if self.done:
            data["done"] = True
        if self.error is not None:
            data["error"] = self.error
        if self.batch is not None:
            data["batch"] = self.batch
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StreamEvent:
        text = data.get("text")
        error = data.get("error")
        batch = data.get("batch")
        return cls(
            text=str(text) if text is not None else None,
            done=bool(data.get("done")),
            error=str(error) if error is not None else None,
            batch=batch if isinstance(batch, int) else None,
        )


def encode_payload(data: dict[str, Any]) -> bytes:
    return f"data: {json.dumps(data, ensure_ascii=False)}\n\n".encode("utf-8")


def encode_event(event: StreamEvent) -> bytes:
    return encode_payload(event.to_dict())


def _decode_line(line: str) -> StreamEvent | None:
    line = line.strip()
    if not line.startswith("data:"):
        return None
    payload = line[5:].strip()
    if not payload or payload == "[DONE]":
        return None
    try:
        data = json.loads(payload)
    except json.JSONDecodeError:
        logger.debug("Skipping malformed event payload: %r", payload[:200])
        return None
    if not isinstance(data, dict):
        return None
    return StreamEvent.from_dict(data)


async def decode_events(chunks: AsyncIterable[bytes]) -> AsyncGenerator[StreamEvent, None]:
    """
    Decode a byte stream into events. Chunks may split lines and multi-byte
    characters anywhere; a trailing line without a newline is still decoded
    when the stream ends.
    """
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    buffer = ""
    async for chunk in chunks:
        buffer += decoder.decode(chunk)
        lines = buffer.split("\n")
        buffer = lines.pop()
        for line in lines:
            event = _decode_line(line)
            if event is not None:
                yield event
    buffer += decoder.decode(b"", final=True)
    event = _decode_line(buffer)
    if event is not None:
        yield event


async def event_stream(deltas: AsyncGenerator[str, None], batch: int | None = None) -> AsyncGenerator[bytes, None]:
    """
    Frame a provider's text deltas as events. Ends with ``done``, or with a
    single ``error`` event if the provider fails. Closing this stream early
    closes the provider stream too.
    """
    try:
        async with aclosing(deltas):
            async for delta in deltas:
                yield encode_event(StreamEvent(text=delta, batch=batch))
    except AdCopyError as exc:
        logger.warning("Stream failed (batch=%s): %s", batch, exc.message)
        yield encode_event(StreamEvent(error=exc.message, batch=batch))
        return
    yield encode_event(StreamEvent(done=True, batch=batch))
