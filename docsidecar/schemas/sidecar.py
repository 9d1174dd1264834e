"""Sidecar record: formatting the Markdown body cannot express, keyed by block id."""
import logging
import math
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import Field, ValidationError

from .base import CamelModel

logger = logging.getLogger(__name__)

SIDECAR_VERSION = 1
WORDS_PER_MINUTE = 200

_clock_lock = threading.Lock()
_last_stamp: Optional[datetime] = None


def utc_now() -> str:
    """UTC ISO-8601 timestamp, strictly later than the previous one handed out."""
    global _last_stamp
    with _clock_lock:
        now = datetime.now(timezone.utc)
        if _last_stamp is not None and now <= _last_stamp:
            now = _last_stamp + timedelta(microseconds=1)
        _last_stamp = now
    return now.isoformat()


class BlockFormatting(CamelModel):
    text_align: Optional[str] = None  # center | right | justify ("left" is the default)
    indent: Optional[int] = None


class SpanFormatting(CamelModel):
    """Style for the plain-text range ``[start, end)`` of one block."""

    start: int = Field(..., ge=0)
    end: int = Field(..., ge=0)
    font_family: Optional[str] = None
    font_size: Optional[Union[str, int, float]] = None
    color: Optional[str] = None
    background_color: Optional[str] = None
    underline: Optional[bool] = None
    superscript: Optional[bool] = None
    subscript: Optional[bool] = None

    def covers(self, start: int, end: int) -> bool:
        return self.start <= start and end <= self.end


class ImageInfo(CamelModel):
    ref: str
    alt: str = ""
    title: Optional[str] = None
    width: Optional[Union[int, float, str]] = None
    height: Optional[Union[int, float, str]] = None
    alignment: Optional[str] = None


class PageMargins(CamelModel):
    top: float
    right: float
    bottom: float
    left: float


class DocumentSettings(CamelModel):
    default_font: Optional[str] = None
    default_font_size: Optional[str] = None
    line_height: Optional[float] = None
    page_size: Optional[str] = None  # A4 | Letter
    page_margins: Optional[PageMargins] = None


class SidecarMeta(CamelModel):
    created: str
    modified: str
    title: Optional[str] = None
    author: Optional[str] = None
    word_count: Optional[int] = None
    reading_time: Optional[int] = None


def _fresh_meta() -> SidecarMeta:
    now = utc_now()
    return SidecarMeta(created=now, modified=now)


class SidecarDocument(CamelModel):
    version: Literal[1] = SIDECAR_VERSION
    meta: SidecarMeta = Field(default_factory=_fresh_meta)
    document: DocumentSettings = Field(default_factory=DocumentSettings)
    blocks: Dict[str, BlockFormatting] = Field(default_factory=dict)
    spans: Dict[str, List[SpanFormatting]] = Field(default_factory=dict)
    images: Dict[str, ImageInfo] = Field(default_factory=dict)
    tables: Dict[str, Dict[str, Any]] = Field(default_factory=dict)

    def referenced_ids(self) -> set:
        return set(self.blocks) | set(self.spans) | set(self.images) | set(self.tables)


def create_empty_sidecar() -> SidecarDocument:
    return SidecarDocument(meta=_fresh_meta())


def update_sidecar_meta(sidecar: SidecarDocument, **updates: Any) -> SidecarDocument:
    """Return a copy with ``updates`` merged into meta and ``modified`` refreshed."""
    meta = sidecar.meta.model_copy(update={**updates, "modified": utc_now()})
    return sidecar.model_copy(update={"meta": meta})


def count_words(text: str) -> int:
    return len(text.split())


def estimate_reading_time(word_count: int, words_per_minute: int = WORDS_PER_MINUTE) -> int:
    """Minutes to read ``word_count`` words, rounded up."""
    return math.ceil(word_count / words_per_minute)


def sidecar_to_json(sidecar: SidecarDocument) -> str:
    return sidecar.model_dump_json(by_alias=True, exclude_none=True, indent=2)


def coerce_sidecar(value: Union[SidecarDocument, Dict[str, Any], str, None]) -> SidecarDocument:
    """Accept a model, a dict, a JSON string or nothing; bad input means no formatting."""
    if value is None:
        return create_empty_sidecar()
    if isinstance(value, SidecarDocument):
        return value
    try:
        if isinstance(value, str):
            return SidecarDocument.model_validate_json(value)
        return SidecarDocument.model_validate(value)
    except ValidationError as exc:
        logger.warning("Ignoring unreadable sidecar (%d validation errors)", exc.error_count())
        return create_empty_sidecar()
