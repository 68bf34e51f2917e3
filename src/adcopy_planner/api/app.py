from __future__ import annotations

import asyncio
from dataclasses import asdict
from typing import Any, AsyncIterator

from fastapi import FastAPI, File, Form, Request, UploadFile
from fastapi.responses import JSONResponse, Response, StreamingResponse

from adcopy_planner.api.models import (
    AdvertiserIn,
    AdvertiserUpdate,
    BatchStreamRequest,
    ChatRequest,
    LearnRequest,
    PlanIdeasRequest,
    PlanIn,
    PlanUpdate,
    ReviewRequest,
    RunRequest,
    SeedIn,
    SingleShotRequest,
    SrtRequest,
    TemplateIn,
    TemplateUpdate,
    TurnIn,
)
from adcopy_planner.config import settings
from adcopy_planner.conversation import (
    ConversationSession,
    ConversationTurn,
    SeedArtifact,
    converse,
    extract_options,
)
from adcopy_planner.exceptions import (
    AdCopyError,
    ConfigurationError,
    InvalidInputError,
    NotFoundError,
    UpstreamAPIError,
)
from adcopy_planner.generation import (
    BatchStreamState,
    GenerationResult,
    StreamFactory,
    build_batches,
    generate_single_shot,
    provider_stream_factory,
    record_run,
    regenerate,
    run_generation,
    stream_batch,
    stream_plan_ideas,
)
from adcopy_planner.logging_config import get_logger
from adcopy_planner.parsing import parse_srt
from adcopy_planner.providers.base import TextProvider, VisionProvider, decode_data_url
from adcopy_planner.providers.gemini_provider import GeminiVisionProvider
from adcopy_planner.providers.openai_provider import OpenAITextProvider
from adcopy_planner.review import learn_guidelines, review_copy
from adcopy_planner.storage import (
    AdvertiserStore,
    HistoryStore,
    PlanStore,
    TemplateStore,
    history_to_csv,
    prefill_plan,
)
from adcopy_planner.streaming import encode_payload
from adcopy_planner.vision import analyze_image_seed, extract_image_copy

logger = get_logger(__name__)

app = FastAPI(title="adcopy_planner")

advertisers = AdvertiserStore()
plans = PlanStore()
templates = TemplateStore()
history = HistoryStore()

_SSE_HEADERS = {"Cache-Control": "no-cache", "Connection": "keep-alive"}


def _get_text_provider() -> TextProvider:
    if not settings.openai_api_key:
        raise ConfigurationError("OPENAI_API_KEY")
    return OpenAITextProvider(api_key=settings.openai_api_key)


def _get_vision_provider() -> VisionProvider:
    if not settings.gemini_api_key:
        raise ConfigurationError("GEMINI_API_KEY")
    return GeminiVisionProvider(api_key=settings.gemini_api_key)


def _status_for(exc: AdCopyError) -> int:
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, InvalidInputError):
        return 400
    if isinstance(exc, UpstreamAPIError):
        return 502
    return 500


@app.exception_handler(AdCopyError)
async def _adcopy_error_handler(request: Request, exc: AdCopyError) -> JSONResponse:
    status = _status_for(exc)
    if status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=status, content={"error": exc.message, "code": exc.error_code})


def _seed_from(seed: SeedIn | None) -> SeedArtifact | None:
    if seed is None or not seed.text.strip():
        return None
    return SeedArtifact(
        kind=seed.kind,
        text=seed.text.strip(),
        product_name=seed.product_name.strip(),
        appeals=tuple(a.strip() for a in seed.appeals if a.strip()),
    )


def _session_from(seed: SeedIn | None, conversation: list[TurnIn]) -> ConversationSession:
    turns = tuple(
        ConversationTurn(
            role=t.role,
            text=t.text,
            options=tuple(extract_options(t.text)) if t.role == "assistant" else (),
        )
        for t in conversation
    )
    return ConversationSession(seed=_seed_from(seed), turns=turns)


def _run_payload(session: ConversationSession, result: GenerationResult | None) -> dict[str, Any]:
    if result is None:
        return {"started": False, "readiness": session.readiness, "variations": [], "batches": [], "errors": {}}
    entry = record_run(history, session, result)
    return {
        "started": True,
        "readiness": session.readiness,
        **result.to_dict(),
        "errors": {str(k): v for k, v in result.errors.items()},
        "history_id": entry.id if entry else None,
    }


# --- Advertisers ---


@app.get("/advertisers")
def list_advertisers():
    return [asdict(a) for a in advertisers.list_advertisers()]


@app.post("/advertisers", status_code=201)
def create_advertiser(body: AdvertiserIn):
    data = body.model_dump()
    name = data.pop("name")
    return asdict(advertisers.create_advertiser(name, **data))


@app.get("/advertisers/{advertiser_id}")
def get_advertiser(advertiser_id: str):
    return asdict(advertisers.read_advertiser(advertiser_id))


@app.put("/advertisers/{advertiser_id}")
def update_advertiser(advertiser_id: str, body: AdvertiserUpdate):
    return asdict(advertisers.update_advertiser(advertiser_id, body.model_dump(exclude_unset=True)))


@app.delete("/advertisers/{advertiser_id}", status_code=204)
def delete_advertiser(advertiser_id: str):
    advertisers.delete_advertiser(advertiser_id)
    return Response(status_code=204)


@app.get("/advertisers/{advertiser_id}/plans")
def list_advertiser_plans(advertiser_id: str):
    advertisers.read_advertiser(advertiser_id)
    return [asdict(p) for p in plans.list_plans(advertiser_id=advertiser_id)]


# --- Ad plans ---


@app.get("/plans")
def list_plans():
    return [asdict(p) for p in plans.list_plans()]


@app.post("/plans", status_code=201)
def create_plan(body: PlanIn):
    data = body.model_dump(exclude={"template_id"})
    if body.template_id:
        data = prefill_plan(templates.read_template(body.template_id), data, body.model_fields_set)
    if data.get("advertiser_id"):
        advertisers.read_advertiser(data["advertiser_id"])
    title = data.pop("title")
    media_type = data.pop("media_type")
    return asdict(plans.create_plan(title, media_type=media_type, **data))


@app.get("/plans/{plan_id}")
def get_plan(plan_id: str):
    plan = plans.read_plan(plan_id)
    out = asdict(plan)
    if plan.advertiser_id:
        try:
            out["advertiser"] = asdict(advertisers.read_advertiser(plan.advertiser_id))
        except NotFoundError:
            out["advertiser"] = None
    return out


@app.put("/plans/{plan_id}")
def update_plan(plan_id: str, body: PlanUpdate):
    return asdict(plans.update_plan(plan_id, body.model_dump(exclude_unset=True)))


@app.delete("/plans/{plan_id}", status_code=204)
def delete_plan(plan_id: str):
    plans.delete_plan(plan_id)
    return Response(status_code=204)


# --- Templates ---


@app.get("/templates")
def list_templates():
    return [asdict(t) for t in templates.list_templates()]


@app.post("/templates", status_code=201)
def create_template(body: TemplateIn):
    data = body.model_dump()
    name = data.pop("name")
    return asdict(templates.create_template(name, **data))


@app.get("/templates/{template_id}")
def get_template(template_id: str):
    return asdict(templates.read_template(template_id))


@app.put("/templates/{template_id}")
def update_template(template_id: str, body: TemplateUpdate):
    return asdict(templates.update_template(template_id, body.model_dump(exclude_unset=True)))


@app.delete("/templates/{template_id}", status_code=204)
def delete_template(template_id: str):
    templates.delete_template(template_id)
    return Response(status_code=204)


# --- AI: seeds ---


async def _read_image(image: UploadFile | None, image_data: str) -> tuple[bytes, str]:
    # Either a multipart upload or a base64 data URL in a form field.
    if image is not None:
        content = await image.read()
        if content:
            return content, image.content_type or "image/jpeg"
    if image_data.strip():
        return decode_data_url(image_data)
    raise InvalidInputError("image is required")


@app.post("/ai/image-analyze")
async def image_analyze(
    image: UploadFile | None = File(None),
    image_data: str = Form(""),
    product_name: str = Form(""),
    appeals: list[str] = Form(default=[]),
):
    content, mime_type = await _read_image(image, image_data)
    provider = _get_vision_provider()
    seed = await analyze_image_seed(content, mime_type, provider, product_name=product_name, appeals=appeals)
    session = ConversationSession().with_seed(seed)
    return {
        "analysis": seed.text,
        "seed": asdict(seed),
        "conversation": [asdict(t) for t in session.turns],
        "readiness": session.readiness,
    }


@app.post("/ai/ocr")
async def image_ocr(image: UploadFile | None = File(None), image_data: str = Form("")):
    content, mime_type = await _read_image(image, image_data)
    provider = _get_vision_provider()
    return await extract_image_copy(content, mime_type, provider)


@app.post("/ai/srt")
def srt_to_script(body: SrtRequest):
    script = parse_srt(body.content)
    return {"script": script, "lines": len(script.splitlines()) if script else 0, "chars": len(script)}


@app.post("/ai/session/start")
def start_session(body: SeedIn):
    seed = _seed_from(body)
    if seed is None:
        raise InvalidInputError("seed text is required")
    session = ConversationSession().with_seed(seed)
    return {"conversation": [asdict(t) for t in session.turns], "readiness": session.readiness}


# --- AI: conversation and generation ---


@app.post("/ai/chat")
async def chat(body: ChatRequest):
    session = _session_from(body.seed, body.conversation)
    provider = _get_text_provider()
    updated, reply = await converse(session, body.message, provider)
    return {
        "reply": reply.reply,
        "readyToGenerate": reply.ready_to_generate,
        "readiness": reply.readiness,
        "options": list(reply.options),
        "multiSelect": reply.multi_select,
        "conversation": [asdict(t) for t in updated.turns],
    }


@app.post("/ai/variation/stream")
async def variation_batch_stream(body: BatchStreamRequest):
    seed = _seed_from(body.seed)
    if seed is None:
        raise InvalidInputError("seed text is required")
    session = _session_from(body.seed, body.conversation)
    if not session.can_generate:
        return {"started": False, "readiness": session.readiness}

    if body.style_directives and len(body.style_directives) >= 2:
        styles = (body.style_directives[0], body.style_directives[1])
    else:
        batches = build_batches(max(settings.batch_count, body.batch_index + 1))
        styles = batches[body.batch_index].styles

    provider = _get_text_provider()
    stream = stream_batch(seed, session.turns, styles, body.batch_index, provider, grammar=body.grammar)
    return StreamingResponse(stream, media_type="text/event-stream", headers=_SSE_HEADERS)


@app.post("/ai/variation/run")
async def variation_run(body: RunRequest):
    session = _session_from(body.seed, body.conversation)
    if session.seed is None:
        raise InvalidInputError("seed text is required")
    factory = provider_stream_factory(_get_text_provider(), grammar=body.grammar)
    if body.feedback.strip():
        session, result = await regenerate(session, factory, feedback=body.feedback, grammar=body.grammar)
    else:
        result = await run_generation(session, factory, grammar=body.grammar)
    return _run_payload(session, result)


@app.post("/ai/variation/run/stream")
async def variation_run_stream(body: RunRequest):
    session = _session_from(body.seed, body.conversation)
    if session.seed is None:
        raise InvalidInputError("seed text is required")
    if body.feedback.strip():
        session = session.with_turn("user", body.feedback.strip())
    if not session.can_generate:
        return {"started": False, "readiness": session.readiness}
    factory = provider_stream_factory(_get_text_provider(), grammar=body.grammar)
    return StreamingResponse(
        _preview_stream(session, factory, body.grammar),
        media_type="text/event-stream",
        headers=_SSE_HEADERS,
    )


async def _preview_stream(session: ConversationSession, factory: StreamFactory, grammar: str) -> AsyncIterator[bytes]:
    """Live per-batch previews, then one final event with the merged result."""
    queue: asyncio.Queue[bytes | None] = asyncio.Queue()

    def on_update(state: BatchStreamState) -> None:
        queue.put_nowait(
            encode_payload({"batch": state.batch_index, "preview": [asdict(v) for v in state.variations]})
        )

    async def runner() -> None:
        try:
            result = await run_generation(session, factory, grammar=grammar, on_update=on_update)
            queue.put_nowait(encode_payload({"done": True, **_run_payload(session, result)}))
        except AdCopyError as exc:
            queue.put_nowait(encode_payload({"error": exc.message}))
        finally:
            queue.put_nowait(None)

    task = asyncio.create_task(runner())
    try:
        while True:
            item = await queue.get()
            if item is None:
                break
            yield item
        await task
    finally:
        if not task.done():
            task.cancel()


@app.post("/ai/variation")
async def single_shot_variation(body: SingleShotRequest):
    advertiser = advertisers.read_advertiser(body.advertiser_id) if body.advertiser_id else None
    provider = _get_text_provider()
    items = await generate_single_shot(body.base_copy, body.media_type, provider, advertiser=advertiser)
    return {"variations": [asdict(i) for i in items]}


@app.post("/ai/plans/stream")
async def plan_ideas_stream(body: PlanIdeasRequest):
    provider = _get_text_provider()
    stream = stream_plan_ideas(body.media_type, provider, advertiser_name=body.advertiser_name)
    return StreamingResponse(stream, media_type="text/event-stream", headers=_SSE_HEADERS)


@app.post("/ai/review")
async def review(body: ReviewRequest):
    provider = _get_text_provider()
    return await review_copy(body.copy_text, body.media_type, provider, advertiser_name=body.advertiser_name)


@app.post("/ai/learn")
async def learn(body: LearnRequest):
    advertiser = advertisers.read_advertiser(body.advertiser_id) if body.advertiser_id else None
    provider = _get_text_provider()
    learned = await learn_guidelines(body.script, body.media_type, provider, advertiser=advertiser)
    out: dict[str, Any] = dict(learned)
    if body.apply and advertiser is not None:
        updated = advertisers.apply_learned_guidelines(advertiser.id, learned, body.media_type)
        out["advertiser"] = asdict(updated)
    return out


# --- History ---


@app.get("/history")
def list_history():
    return [asdict(e) for e in history.list()]


@app.get("/history/{entry_id}")
def get_history_entry(entry_id: str):
    return asdict(history.get(entry_id))


@app.get("/history/{entry_id}/csv")
def export_history_entry(entry_id: str):
    entry = history.get(entry_id)
    return Response(
        content=history_to_csv(entry),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="variations_{entry.id}.csv"'},
    )


@app.delete("/history/{entry_id}", status_code=204)
def delete_history_entry(entry_id: str):
    history.delete(entry_id)
    return Response(status_code=204)
