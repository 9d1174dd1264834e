"""Per-call conversion state and collaborator plumbing."""
import inspect
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Set, Union

from docsidecar.schemas.sidecar import SidecarDocument

# store_image(data_url) -> token, load_image(token) -> data_url; sync or async.
ImageCallback = Callable[[str], Union[str, Awaitable[str]]]


@dataclass
class ConversionContext:
    """Scratch state for one serialize/deserialize call, threaded through the walk."""

    sidecar: SidecarDocument
    image_refs: Dict[str, str] = field(default_factory=dict)
    seen_ids: Set[str] = field(default_factory=set)


async def call_collaborator(callback: ImageCallback, argument: str) -> Any:
    result = callback(argument)
    if inspect.isawaitable(result):
        result = await result
    return result
