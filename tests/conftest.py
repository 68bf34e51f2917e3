import os
import re
import tempfile

# Keep module-level stores created at import time out of the working tree.
os.environ.setdefault("DATA_DIR", tempfile.mkdtemp(prefix="adcopy_planner_test_"))

import pytest

from adcopy_planner.exceptions import UpstreamAPIError
from adcopy_planner.streaming import StreamEvent, encode_event

_FIRST_NUMBER_RE = re.compile(r"- Variation (\d+):")


def script_blocks(first: int, count: int = 2) -> str:
    parts = []
    for n in range(first, first + count):
        parts.append(
            "---\n"
            f"[Variation {n}]\n"
            f"Hello again, this is script number {n}.\n"
            "Buy now while it lasts!\n\n"
            f"[Change Point] rewrote the tone for take {n}\n\n"
        )
    return "".join(parts) + "---\n"


def copy_blocks(first: int, count: int = 2) -> str:
    parts = []
    for n in range(first, first + count):
        parts.append(
            "---\n"
            f"[Variation {n}]\n"
            f"Main Copy: Headline {n}\n"
            f"Sub Copy: Supporting line {n}\n"
            f"Change Point: changed angle {n}\n"
        )
    return "".join(parts) + "---\n"


class FakeTextProvider:
    """In-process stand-in for the OpenAI provider."""

    name = "fake"

    def __init__(self, replies=None, stream_text=None, chunk_size=7, fail=False):
        self.replies = list(replies or [])
        self.stream_text = stream_text
        self.chunk_size = chunk_size
        self.fail = fail
        self.calls = []

    async def complete(self, system, messages, max_tokens):
        self.calls.append({"system": system, "messages": messages, "max_tokens": max_tokens})
        if self.fail:
            raise UpstreamAPIError(self.name, "boom", status_code=500)
        return self.replies.pop(0) if self.replies else ""

    async def stream(self, system, messages, max_tokens):
        self.calls.append({"system": system, "messages": messages, "max_tokens": max_tokens, "stream": True})
        if self.fail:
            raise UpstreamAPIError(self.name, "boom", status_code=500)
        text = self.stream_text(messages) if callable(self.stream_text) else (self.stream_text or "")
        for i in range(0, len(text), self.chunk_size):
            yield text[i : i + self.chunk_size]


class FakeVisionProvider:
    name = "fake-vision"

    def __init__(self, text="Main copy: Big Sale\nBright red layout, product centered."):
        self.text = text
        self.calls = []

    async def describe_image(self, image_bytes, mime_type, instruction, max_tokens):
        self.calls.append({"mime_type": mime_type, "size": len(image_bytes), "instruction": instruction})
        return self.text


def numbered_script_stream(messages):
    """Answer a batch prompt with the two script blocks it asked for."""
    m = _FIRST_NUMBER_RE.search(messages[-1]["content"])
    first = int(m.group(1)) if m else 1
    return script_blocks(first)


async def event_source(*events, delay=0.0):
    import asyncio

    for event in events:
        if delay:
            await asyncio.sleep(delay)
        yield encode_event(event)


def text_events(text, chunk_size=9, batch=None):
    events = [StreamEvent(text=text[i : i + chunk_size], batch=batch) for i in range(0, len(text), chunk_size)]
    events.append(StreamEvent(done=True, batch=batch))
    return events


@pytest.fixture
def fake_text_provider():
    return FakeTextProvider(stream_text=numbered_script_stream)


@pytest.fixture
def fake_vision_provider():
    return FakeVisionProvider()
