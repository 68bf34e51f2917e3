import asyncio
import base64
import logging
from io import BytesIO
from types import SimpleNamespace

import httpx
import openai
import pytest
from PIL import Image

from adcopy_planner.exceptions import InvalidInputError, UpstreamAPIError
from adcopy_planner.logging_config import get_logger, set_debug_mode
from adcopy_planner.providers.base import decode_data_url
from adcopy_planner.providers.gemini_provider import GeminiVisionProvider, load_image
from adcopy_planner.providers.openai_provider import OpenAITextProvider
from adcopy_planner.vision import analyze_image_seed, extract_image_copy

from conftest import FakeVisionProvider


def _png(size=(8, 8)):
    buf = BytesIO()
    Image.new("RGB", size, (255, 0, 0)).save(buf, format="PNG")
    return buf.getvalue()


def test_decode_data_url():
    raw = _png()
    encoded = base64.b64encode(raw).decode("ascii")
    assert decode_data_url(f"data:image/png;base64,{encoded}") == (raw, "image/png")
    assert decode_data_url(encoded) == (raw, "image/jpeg")
    with pytest.raises(InvalidInputError):
        decode_data_url("   ")


def test_load_image_downscales_and_rejects_garbage():
    assert load_image(_png()).size == (8, 8)
    assert max(load_image(_png((3000, 100))).size) == 2048
    with pytest.raises(InvalidInputError):
        load_image(b"definitely not an image")


def test_gemini_describe_image_sends_instruction_and_image():
    provider = GeminiVisionProvider(api_key="test-key", model="test-model")
    seen = {}

    async def generate_content(model, contents, config):
        seen.update(model=model, contents=contents, max_tokens=config.max_output_tokens)
        return SimpleNamespace(text="A red square")

    provider.client = SimpleNamespace(aio=SimpleNamespace(models=SimpleNamespace(generate_content=generate_content)))

    text = asyncio.run(provider.describe_image(_png(), "image/png", "Describe it", max_tokens=99))
    assert text == "A red square"
    assert seen["model"] == "test-model"
    assert seen["contents"][0] == "Describe it"
    assert isinstance(seen["contents"][1], Image.Image)
    assert seen["max_tokens"] == 99


def _openai_with(create):
    provider = OpenAITextProvider(api_key="test-key", model="test-model")
    provider.client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))
    return provider


def test_openai_complete_builds_messages():
    seen = {}

    async def create(**kwargs):
        seen.update(kwargs)
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content="Sure!"))])

    provider = _openai_with(create)
    out = asyncio.run(
        provider.complete(system="sys", messages=[{"role": "user", "content": "hi"}, {"role": "tool", "content": "x"}], max_tokens=10)
    )
    assert out == "Sure!"
    assert seen["messages"] == [
        {"role": "system", "content": "sys"},
        {"role": "user", "content": "hi"},
        {"role": "user", "content": "x"},
    ]
    assert seen["max_tokens"] == 10


def test_openai_stream_yields_deltas():
    async def chunks():
        for piece in ("Hel", None, "lo"):
            yield SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=piece))])
        yield SimpleNamespace(choices=[])

    async def create(**kwargs):
        assert kwargs["stream"] is True
        return chunks()

    async def collect():
        return [d async for d in _openai_with(create).stream(system=None, messages=[], max_tokens=5)]

    assert asyncio.run(collect()) == ["Hel", "lo"]


def test_openai_errors_become_upstream_errors():
    async def create(**kwargs):
        raise openai.APIConnectionError(request=httpx.Request("POST", "https://api.openai.com/v1/chat/completions"))

    provider = _openai_with(create)
    with pytest.raises(UpstreamAPIError) as info:
        asyncio.run(provider.complete(system=None, messages=[], max_tokens=5))
    assert info.value.error_code == "UPSTREAM_ERROR"
    assert info.value.message.startswith("openai API error")


def test_image_seed_carries_product_info():
    seed = asyncio.run(
        analyze_image_seed(b"img", "image/png", FakeVisionProvider(), product_name="Widget", appeals=["cheap"])
    )
    assert seed.kind == "image"
    assert seed.product_name == "Widget"
    assert seed.appeals == ("cheap",)


def test_empty_image_analysis_is_an_upstream_error():
    with pytest.raises(UpstreamAPIError):
        asyncio.run(analyze_image_seed(b"img", "image/png", FakeVisionProvider(text="  ")))


def test_extract_image_copy_keeps_raw_text():
    provider = FakeVisionProvider(text="[Category] beauty\n[Copy]\nNo text")
    out = asyncio.run(extract_image_copy(b"img", "image/png", provider))
    assert out == {"category": "beauty", "copy": [], "raw_text": "[Category] beauty\n[Copy]\nNo text"}


def test_get_logger_is_cached_and_debug_mode_toggles_console():
    logger = get_logger("adcopy_planner.tests.sample")
    assert get_logger("adcopy_planner.tests.sample") is logger
    assert logger.propagate is False

    console = [h for h in logger.handlers if type(h) is logging.StreamHandler]
    set_debug_mode(True)
    assert console[0].level == logging.DEBUG
    set_debug_mode(False)
    assert console[0].level == logging.INFO
