"""docsidecar: store rich editor documents as plain Markdown plus a formatting sidecar."""

from .schemas import (
    Document,
    SidecarDocument,
    coerce_sidecar,
    create_empty_sidecar,
    estimate_reading_time,
    update_sidecar_meta,
)
from .serialization import (
    Deserializer,
    SerializeResult,
    Serializer,
    deserialize_document,
    generate_block_id,
    serialize_document,
)

__version__ = "0.1.0"
