"""Line-level markers shared by the serializer and deserializer."""
import re
import secrets
from typing import Optional

BLOCK_ID_TOKEN_RE = re.compile(r"[a-zA-Z0-9_:-]+")
BLOCK_ID_RE = re.compile(rf"^<!-- @mid:({BLOCK_ID_TOKEN_RE.pattern}) -->$")
IMAGE_REF_PREFIX = "@img:"
IMAGE_REF_RE = re.compile(r"^@img:([a-zA-Z0-9_-]+)$")
TABLE_PLACEHOLDER = "<!-- table -->"


def generate_block_id(prefix: str = "blk") -> str:
    return f"{prefix}-{secrets.token_hex(8)}"


def is_block_id(value: str) -> bool:
    """True when ``value`` can be written into an id comment and read back."""
    return bool(value) and BLOCK_ID_TOKEN_RE.fullmatch(value) is not None


def block_id_comment(block_id: str) -> str:
    return f"<!-- @mid:{block_id} -->"


def parse_block_id(line: str) -> Optional[str]:
    match = BLOCK_ID_RE.match(line.rstrip())
    return match.group(1) if match else None


def image_ref(token: str) -> str:
    """Reference written into the body for a stored image token."""
    return token if token.startswith(IMAGE_REF_PREFIX) else f"{IMAGE_REF_PREFIX}{token}"


def parse_image_ref(src: str) -> Optional[str]:
    match = IMAGE_REF_RE.match(src or "")
    return match.group(1) if match else None
