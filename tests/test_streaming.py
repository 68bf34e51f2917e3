import asyncio
import json

from adcopy_planner.exceptions import UpstreamAPIError
from adcopy_planner.streaming import StreamEvent, decode_events, encode_event, encode_payload, event_stream


async def _chunks(data: bytes, size: int):
    for i in range(0, len(data), size):
        yield data[i : i + size]


async def _collect(aiter):
    return [item async for item in aiter]


def test_encode_payload_frames_json():
    frame = encode_payload({"text": "안녕"})
    assert frame.startswith(b"data: ")
    assert frame.endswith(b"\n\n")
    assert json.loads(frame[6:].decode("utf-8")) == {"text": "안녕"}


def test_event_dict_omits_unset_fields():
    assert StreamEvent(text="hi").to_dict() == {"text": "hi"}
    assert StreamEvent(done=True, batch=2).to_dict() == {"done": True, "batch": 2}
    assert StreamEvent.from_dict({"error": 5, "batch": "x"}) == StreamEvent(error="5")


def test_decode_survives_arbitrary_chunk_boundaries():
    events = [StreamEvent(text="여름 세일 "), StreamEvent(text="지금 바로!"), StreamEvent(done=True)]
    data = b"".join(encode_event(e) for e in events)
    for size in (1, 2, 3, 5, 64):
        assert asyncio.run(_collect(decode_events(_chunks(data, size)))) == events


def test_decode_skips_noise_and_handles_trailing_line():
    data = (
        b": keep-alive\n\n"
        b"data: not json\n\n"
        b"data: [DONE]\n\n"
        b"data: [1, 2]\n\n"
        b'data: {"text": "a"}\n\n'
        b'data: {"done": true}'
    )
    out = asyncio.run(_collect(decode_events(_chunks(data, 4))))
    assert out == [StreamEvent(text="a"), StreamEvent(done=True)]


def test_event_stream_ends_with_done():
    async def deltas():
        yield "one "
        yield "two"

    frames = asyncio.run(_collect(event_stream(deltas(), batch=1)))
    decoded = [json.loads(f[6:]) for f in frames]
    assert decoded == [
        {"text": "one ", "batch": 1},
        {"text": "two", "batch": 1},
        {"done": True, "batch": 1},
    ]


def test_event_stream_turns_provider_failure_into_single_error_event():
    async def deltas():
        yield "partial"
        raise UpstreamAPIError("openai", "rate limited", status_code=429)

    frames = asyncio.run(_collect(event_stream(deltas())))
    decoded = [json.loads(f[6:]) for f in frames]
    assert decoded[0] == {"text": "partial"}
    assert len(decoded) == 2
    assert "rate limited" in decoded[1]["error"]
    assert "done" not in decoded[1]


def test_closing_event_stream_early_closes_provider_stream():
    closed = []

    async def deltas():
        try:
            yield "one "
            yield "two"
        finally:
            closed.append(True)

    async def scenario():
        frames = event_stream(deltas(), batch=0)
        first = await frames.__anext__()
        await frames.aclose()
        return first, list(closed)

    first, closed_after_aclose = asyncio.run(scenario())
    assert json.loads(first[6:]) == {"text": "one ", "batch": 0}
    assert closed_after_aclose == [True]
