"""Content-addressed image directory implementing the store/load callbacks."""
import asyncio
import base64
import hashlib
import logging
import mimetypes
import os
import re
from typing import Optional, Tuple

logger = logging.getLogger(__name__)

_DATA_URL_RE = re.compile(r"^data:([\w.+-]+/[\w.+-]+)?((?:;[^;,]*)*?)(;base64)?,(.*)$", re.DOTALL)
_TOKEN_RE = re.compile(r"^[0-9a-f]{16}$")
_EXTENSIONS = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/gif": ".gif",
    "image/webp": ".webp",
    "image/svg+xml": ".svg",
}


class ImageNotFoundError(KeyError):
    """No stored image for the requested token."""


def _decode_data_url(data_url: str) -> Tuple[str, bytes]:
    match = _DATA_URL_RE.match(data_url)
    if not match:
        raise ValueError("not a data: URL")
    mime = match.group(1) or "application/octet-stream"
    payload = match.group(4)
    if match.group(3):
        return mime, base64.b64decode(payload)
    return mime, payload.encode("utf-8")


class DirectoryImageStore:
    """Stores ``data:`` payloads as ``<token><ext>`` files under ``root``.

    The token is the first 16 hex chars of the SHA-256 of the decoded bytes,
    so storing the same image twice yields the same token and one file.
    """

    def __init__(self, root: str):
        self.root = root

    def _find(self, token: str) -> Optional[str]:
        if not _TOKEN_RE.match(token) or not os.path.isdir(self.root):
            return None
        for name in sorted(os.listdir(self.root)):
            if os.path.splitext(name)[0] == token:
                return os.path.join(self.root, name)
        return None

    async def store(self, data_url: str) -> str:
        mime, data = _decode_data_url(data_url)
        token = hashlib.sha256(data).hexdigest()[:16]
        extension = _EXTENSIONS.get(mime) or mimetypes.guess_extension(mime) or ".bin"
        path = os.path.join(self.root, token + extension)

        def _write() -> None:
            os.makedirs(self.root, exist_ok=True)
            if os.path.exists(path):
                return
            with open(path, "wb") as f:
                f.write(data)

        await asyncio.to_thread(_write)
        logger.debug("Stored image %s (%d bytes)", token, len(data))
        return token

    async def load(self, token: str) -> str:
        path = self._find(token)
        if path is None:
            raise ImageNotFoundError(token)

        def _read() -> bytes:
            with open(path, "rb") as f:
                return f.read()

        data = await asyncio.to_thread(_read)
        extension = os.path.splitext(path)[1]
        mime = next((m for m, ext in _EXTENSIONS.items() if ext == extension), None)
        mime = mime or mimetypes.guess_type(path)[0] or "application/octet-stream"
        return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"
