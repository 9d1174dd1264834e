"""Writers for the Markdown body and its sidecar as sibling files."""
import os
from typing import Optional, Tuple

from docsidecar.schemas.sidecar import SidecarDocument, coerce_sidecar, sidecar_to_json

SIDECAR_SUFFIX = ".sidecar.json"


def sidecar_path_for(md_path: str) -> str:
    root, _ = os.path.splitext(md_path)
    return root + SIDECAR_SUFFIX


def write_pair(markdown: str, sidecar: SidecarDocument, base_path: str) -> Tuple[str, str]:
    """Persist ``<base_path>.md`` and ``<base_path>.sidecar.json``; returns both paths."""
    directory = os.path.dirname(base_path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    md_path = base_path + ".md"
    sidecar_path = base_path + SIDECAR_SUFFIX
    with open(md_path, "w", encoding="utf-8") as f:
        f.write(markdown)
    with open(sidecar_path, "w", encoding="utf-8") as f:
        f.write(sidecar_to_json(sidecar))
        f.write("\n")
    return md_path, sidecar_path


def read_pair(md_path: str, sidecar_path: Optional[str] = None) -> Tuple[str, Optional[SidecarDocument]]:
    """Load a body and its sidecar; a missing sidecar file means no formatting recorded."""
    with open(md_path, "r", encoding="utf-8") as f:
        markdown = f.read()
    sidecar_path = sidecar_path or sidecar_path_for(md_path)
    if not os.path.exists(sidecar_path):
        return markdown, None
    with open(sidecar_path, "r", encoding="utf-8") as f:
        return markdown, coerce_sidecar(f.read())
