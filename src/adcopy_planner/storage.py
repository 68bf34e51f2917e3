from __future__ import annotations

import csv
import io
import json
import uuid
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from adcopy_planner.config import settings
from adcopy_planner.exceptions import (
    AdvertiserNotFoundError,
    HistoryEntryNotFoundError,
    InvalidInputError,
    PlanNotFoundError,
    TemplateNotFoundError,
)
from adcopy_planner.logging_config import get_logger

logger = get_logger(__name__)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _new_id() -> str:
    return uuid.uuid4().hex[:12]


def _clean_list(values: Any) -> list[str]:
    if not values:
        return []
    return [str(v).strip() for v in values if str(v).strip()]


@dataclass
class Advertiser:
    id: str
    name: str
    created_at: str
    brand_color: str | None = None
    brand_font: str | None = None
    tone_manner: str | None = None
    forbidden_words: list[str] = field(default_factory=list)
    required_phrases: list[str] = field(default_factory=list)
    guidelines: str | None = None
    guidelines_image: str | None = None
    guidelines_video: str | None = None
    products: list[str] = field(default_factory=list)
    appeals: list[str] = field(default_factory=list)
    cautions: str | None = None


@dataclass
class AdPlan:
    id: str
    title: str
    media_type: str  # image|video
    created_at: str
    advertiser_id: str | None = None
    size: str | None = None
    concept: str | None = None
    main_copy: str | None = None
    sub_copy: str | None = None
    cta_text: str | None = None
    notes: str | None = None


@dataclass
class Template:
    id: str
    name: str
    created_at: str
    media_type: str | None = None  # image|video
    default_size: str | None = None
    structure: dict[str, Any] | None = None


@dataclass(frozen=True)
class HistoryEntry:
    id: str
    timestamp: str
    seed_summary: str
    variations: list[dict[str, Any]]
    conversation: list[dict[str, Any]]


_ADVERTISER_LIST_FIELDS = ("forbidden_words", "required_phrases", "products", "appeals")
_READONLY_FIELDS = ("id", "created_at")


def _known(cls: type, data: dict[str, Any]) -> dict[str, Any]:
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in names}


class _JsonRecordStore:
    """One JSON file per record under ``root_dir/<subdir>``."""

    subdir = ""

    def __init__(self, root_dir: Path | None = None) -> None:
        self.root_dir = Path(root_dir or settings.data_dir).resolve()
        self.records_dir = self.root_dir / self.subdir
        self.records_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, record_id: str) -> Path:
        # Ids are generated hex strings; anything else cannot name a record.
        if not record_id or not record_id.isalnum():
            return self.records_dir / "__missing__.json"
        return self.records_dir / f"{record_id}.json"

    def _read_raw(self, record_id: str) -> dict[str, Any] | None:
        path = self._path(record_id)
        if not path.exists():
            return None
        try:
            data = json.loads(path.read_text("utf-8"))
        except (OSError, ValueError):
            # An undecodable record reads as missing.
            logger.warning("Ignoring unreadable record %s", path, exc_info=True)
            return None
        return data if isinstance(data, dict) else None

    def _write_raw(self, record_id: str, data: dict[str, Any]) -> None:
        self._path(record_id).write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")

    def _list_raw(self) -> list[dict[str, Any]]:
        out: list[dict[str, Any]] = []
        for path in self.records_dir.glob("*.json"):
            try:
                data = json.loads(path.read_text("utf-8"))
            except (OSError, ValueError):
                # Skip corrupted records, including invalid UTF-8.
                logger.warning("Ignoring unreadable record %s", path, exc_info=True)
                continue
            if isinstance(data, dict):
                out.append(data)
        out.sort(key=lambda d: d.get("created_at", ""), reverse=True)
        return out

    def _delete_raw(self, record_id: str) -> bool:
        path = self._path(record_id)
        if not path.exists():
            return False
        path.unlink()
        return True


class AdvertiserStore(_JsonRecordStore):
    subdir = "advertisers"

    def create_advertiser(self, name: str, **attrs: Any) -> Advertiser:
        if not (name or "").strip():
            raise InvalidInputError("advertiser name is required")
        data = _known(Advertiser, attrs)
        for key in _READONLY_FIELDS:
            data.pop(key, None)
        for key in _ADVERTISER_LIST_FIELDS:
            if key in data:
                data[key] = _clean_list(data[key])
        adv = Advertiser(id=_new_id(), name=name.strip(), created_at=_now_iso(), **data)
        self._write_raw(adv.id, asdict(adv))
        logger.info("Created advertiser %s (%s)", adv.id, adv.name)
        return adv

    def list_advertisers(self) -> list[Advertiser]:
        return [Advertiser(**_known(Advertiser, d)) for d in self._list_raw()]

    def read_advertiser(self, advertiser_id: str) -> Advertiser:
        data = self._read_raw(advertiser_id)
        if data is None:
            raise AdvertiserNotFoundError(advertiser_id)
        return Advertiser(**_known(Advertiser, data))

    def update_advertiser(self, advertiser_id: str, updates: dict[str, Any]) -> Advertiser:
        adv = self.read_advertiser(advertiser_id)
        data = asdict(adv)
        for key, value in _known(Advertiser, updates).items():
            if key in _READONLY_FIELDS:
                continue
            data[key] = _clean_list(value) if key in _ADVERTISER_LIST_FIELDS else value
        if not (data.get("name") or "").strip():
            raise InvalidInputError("advertiser name is required")
        self._write_raw(advertiser_id, data)
        return Advertiser(**data)

    def delete_advertiser(self, advertiser_id: str) -> None:
        if not self._delete_raw(advertiser_id):
            raise AdvertiserNotFoundError(advertiser_id)
        logger.info("Deleted advertiser %s", advertiser_id)

    def apply_learned_guidelines(self, advertiser_id: str, learned: dict[str, Any], media_type: str) -> Advertiser:
        """
        Merge guidelines extracted from a sample script or copy: the guideline
        text for the media type is replaced, new appeals are appended, and
        cautions are replaced when the new value is non-empty.
        """
        adv = self.read_advertiser(advertiser_id)
        updates: dict[str, Any] = {}
        guidelines = str(learned.get("guidelines") or "").strip()
        if guidelines:
            updates["guidelines_video" if media_type == "video" else "guidelines_image"] = guidelines
        new_appeals = _clean_list(learned.get("appeals"))
        if new_appeals:
            merged = list(adv.appeals)
            merged.extend(a for a in new_appeals if a not in merged)
            updates["appeals"] = merged
        cautions = str(learned.get("cautions") or "").strip()
        if cautions:
            updates["cautions"] = cautions
        if not updates:
            return adv
        return self.update_advertiser(advertiser_id, updates)


class PlanStore(_JsonRecordStore):
    subdir = "plans"

    def create_plan(self, title: str, media_type: str = "image", **attrs: Any) -> AdPlan:
        if not (title or "").strip():
            raise InvalidInputError("plan title is required")
        if media_type not in ("image", "video"):
            raise InvalidInputError("media_type must be 'image' or 'video'")
        data = _known(AdPlan, attrs)
        for key in _READONLY_FIELDS:
            data.pop(key, None)
        plan = AdPlan(id=_new_id(), title=title.strip(), media_type=media_type, created_at=_now_iso(), **data)
        self._write_raw(plan.id, asdict(plan))
        return plan

    def list_plans(self, advertiser_id: str | None = None) -> list[AdPlan]:
        plans = [AdPlan(**_known(AdPlan, d)) for d in self._list_raw()]
        if advertiser_id is not None:
            plans = [p for p in plans if p.advertiser_id == advertiser_id]
        return plans

    def read_plan(self, plan_id: str) -> AdPlan:
        data = self._read_raw(plan_id)
        if data is None:
            raise PlanNotFoundError(plan_id)
        return AdPlan(**_known(AdPlan, data))

    def update_plan(self, plan_id: str, updates: dict[str, Any]) -> AdPlan:
        data = asdict(self.read_plan(plan_id))
        for key, value in _known(AdPlan, updates).items():
            if key in _READONLY_FIELDS:
                continue
            data[key] = value
        if data.get("media_type") not in ("image", "video"):
            raise InvalidInputError("media_type must be 'image' or 'video'")
        self._write_raw(plan_id, data)
        return AdPlan(**data)

    def delete_plan(self, plan_id: str) -> None:
        if not self._delete_raw(plan_id):
            raise PlanNotFoundError(plan_id)


class TemplateStore(_JsonRecordStore):
    subdir = "templates"

    def _check(self, data: dict[str, Any]) -> None:
        if not (data.get("name") or "").strip():
            raise InvalidInputError("template name is required")
        if data.get("media_type") not in (None, "image", "video"):
            raise InvalidInputError("media_type must be 'image' or 'video'")
        if data.get("structure") is not None and not isinstance(data["structure"], dict):
            raise InvalidInputError("structure must be an object")

    def create_template(self, name: str, **attrs: Any) -> Template:
        data = _known(Template, attrs)
        for key in _READONLY_FIELDS:
            data.pop(key, None)
        data["name"] = (name or "").strip()
        self._check(data)
        tpl = Template(id=_new_id(), created_at=_now_iso(), **data)
        self._write_raw(tpl.id, asdict(tpl))
        return tpl

    def list_templates(self) -> list[Template]:
        return [Template(**_known(Template, d)) for d in self._list_raw()]

    def read_template(self, template_id: str) -> Template:
        data = self._read_raw(template_id)
        if data is None:
            raise TemplateNotFoundError(template_id)
        return Template(**_known(Template, data))

    def update_template(self, template_id: str, updates: dict[str, Any]) -> Template:
        data = asdict(self.read_template(template_id))
        for key, value in _known(Template, updates).items():
            if key in _READONLY_FIELDS:
                continue
            data[key] = value
        self._check(data)
        self._write_raw(template_id, data)
        return Template(**data)

    def delete_template(self, template_id: str) -> None:
        if not self._delete_raw(template_id):
            raise TemplateNotFoundError(template_id)


def prefill_plan(template: Template, fields: dict[str, Any], explicit: set[str]) -> dict[str, Any]:
    """
    Plan fields with a template's defaults applied: the template's media type
    unless the caller chose one, and its default size when no size was given.
    """
    out = dict(fields)
    if "media_type" not in explicit and template.media_type in ("image", "video"):
        out["media_type"] = template.media_type
    if not out.get("size") and template.default_size:
        out["size"] = template.default_size
    return out


class HistoryStore:
    """
    Generation history in a single JSON array, newest first.

    The file is read once on construction and rewritten whole on every
    change; it never holds more than ``limit`` entries.
    """

    def __init__(self, root_dir: Path | None = None, limit: int | None = None) -> None:
        self.root_dir = Path(root_dir or settings.data_dir).resolve()
        self.root_dir.mkdir(parents=True, exist_ok=True)
        self.path = self.root_dir / "history.json"
        self.limit = settings.history_limit if limit is None else limit
        self._entries: list[HistoryEntry] = self._load()

    def _load(self) -> list[HistoryEntry]:
        if not self.path.exists():
            return []
        try:
            data = json.loads(self.path.read_text("utf-8"))
            entries = [HistoryEntry(**d) for d in data]
        except (OSError, ValueError, TypeError):
            # A corrupted history slot is treated as empty.
            logger.warning("History file %s is unreadable; starting empty", self.path, exc_info=True)
            return []
        return entries[: self.limit]

    def _save(self) -> None:
        self.path.write_text(
            json.dumps([asdict(e) for e in self._entries], indent=2, ensure_ascii=False),
            encoding="utf-8",
        )

    def add(self, entry: HistoryEntry) -> None:
        self._entries = [entry] + self._entries
        if len(self._entries) > self.limit:
            logger.debug("History over limit; evicting %d entr(ies)", len(self._entries) - self.limit)
            self._entries = self._entries[: self.limit]
        self._save()

    def list(self) -> list[HistoryEntry]:
        return list(self._entries)

    def get(self, entry_id: str) -> HistoryEntry:
        for e in self._entries:
            if e.id == entry_id:
                return e
        raise HistoryEntryNotFoundError(entry_id)

    def delete(self, entry_id: str) -> None:
        remaining = [e for e in self._entries if e.id != entry_id]
        if len(remaining) == len(self._entries):
            raise HistoryEntryNotFoundError(entry_id)
        self._entries = remaining
        self._save()

    def clear(self) -> None:
        self._entries = []
        self._save()


def history_to_csv(entry: HistoryEntry) -> str:
    """One row per variation; columns cover both the script and the copy shapes."""
    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow(["#", "main_text", "secondary_text", "body", "rationale"])
    for idx, v in enumerate(entry.variations, start=1):
        writer.writerow(
            [
                idx,
                v.get("main_text", ""),
                v.get("secondary_text", ""),
                v.get("body", ""),
                v.get("rationale", ""),
            ]
        )
    return buf.getvalue()
