"""Editor tree <-> Markdown body + sidecar conversion."""

from .context import ConversionContext, ImageCallback
from .deserializer import Deserializer, deserialize_document
from .markers import generate_block_id
from .serializer import SerializeResult, Serializer, serialize_document
