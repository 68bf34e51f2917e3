"""Request bodies for the JSON API."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

MediaType = Literal["image", "video"]
Grammar = Literal["script", "copy"]


class AdvertiserIn(BaseModel):
    name: str
    brand_color: str | None = None
    brand_font: str | None = None
    tone_manner: str | None = None
    forbidden_words: list[str] = Field(default_factory=list)
    required_phrases: list[str] = Field(default_factory=list)
    guidelines: str | None = None
    guidelines_image: str | None = None
    guidelines_video: str | None = None
    products: list[str] = Field(default_factory=list)
    appeals: list[str] = Field(default_factory=list)
    cautions: str | None = None


class AdvertiserUpdate(BaseModel):
    name: str | None = None
    brand_color: str | None = None
    brand_font: str | None = None
    tone_manner: str | None = None
    forbidden_words: list[str] | None = None
    required_phrases: list[str] | None = None
    guidelines: str | None = None
    guidelines_image: str | None = None
    guidelines_video: str | None = None
    products: list[str] | None = None
    appeals: list[str] | None = None
    cautions: str | None = None


class PlanIn(BaseModel):
    title: str
    media_type: MediaType = "image"
    advertiser_id: str | None = None
    # Pre-fills media type and size from a template.
    template_id: str | None = None
    size: str | None = None
    concept: str | None = None
    main_copy: str | None = None
    sub_copy: str | None = None
    cta_text: str | None = None
    notes: str | None = None


class PlanUpdate(BaseModel):
    title: str | None = None
    media_type: MediaType | None = None
    advertiser_id: str | None = None
    size: str | None = None
    concept: str | None = None
    main_copy: str | None = None
    sub_copy: str | None = None
    cta_text: str | None = None
    notes: str | None = None


class TemplateIn(BaseModel):
    name: str
    media_type: MediaType | None = None
    default_size: str | None = None
    structure: dict[str, Any] | None = None


class TemplateUpdate(BaseModel):
    name: str | None = None
    media_type: MediaType | None = None
    default_size: str | None = None
    structure: dict[str, Any] | None = None


class SeedIn(BaseModel):
    kind: Literal["script", "image"] = "script"
    text: str
    product_name: str = ""
    appeals: list[str] = Field(default_factory=list)


class TurnIn(BaseModel):
    role: Literal["user", "assistant"]
    text: str


class ChatRequest(BaseModel):
    seed: SeedIn | None = None
    conversation: list[TurnIn] = Field(default_factory=list)
    message: str


class BatchStreamRequest(BaseModel):
    seed: SeedIn
    conversation: list[TurnIn] = Field(default_factory=list)
    batch_index: int = Field(0, ge=0)
    style_directives: list[str] | None = None
    grammar: Grammar = "script"


class RunRequest(BaseModel):
    seed: SeedIn
    conversation: list[TurnIn] = Field(default_factory=list)
    grammar: Grammar = "script"
    # Non-empty feedback makes this the regenerate pass.
    feedback: str = ""


class SingleShotRequest(BaseModel):
    base_copy: str
    media_type: MediaType = "image"
    advertiser_id: str | None = None


class PlanIdeasRequest(BaseModel):
    media_type: MediaType = "image"
    advertiser_name: str | None = None


class ReviewRequest(BaseModel):
    copy_text: str = Field(alias="copy")
    media_type: MediaType = "image"
    advertiser_name: str | None = None


class LearnRequest(BaseModel):
    script: str
    media_type: MediaType = "image"
    advertiser_id: str | None = None
    apply: bool = False


class SrtRequest(BaseModel):
    content: str
