"""Pydantic models for the editor tree and the formatting sidecar."""

from .sidecar import (
    BlockFormatting,
    DocumentSettings,
    ImageInfo,
    SidecarDocument,
    SidecarMeta,
    SpanFormatting,
    coerce_sidecar,
    count_words,
    create_empty_sidecar,
    estimate_reading_time,
    sidecar_to_json,
    update_sidecar_meta,
)
from .tree import Document, Mark, MarkType, Node, plain_text, to_tiptap
