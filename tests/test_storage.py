import base64
import hashlib
import os

import pytest

from docsidecar.schemas.sidecar import create_empty_sidecar, update_sidecar_meta
from docsidecar.storage import DirectoryImageStore, ImageNotFoundError, read_pair, write_pair

PIXEL = b"\x89PNG\r\n\x1a\nfake-pixel"
PIXEL_URL = "data:image/png;base64," + base64.b64encode(PIXEL).decode("ascii")


@pytest.mark.asyncio
async def test_directory_store_is_content_addressed(tmp_path):
    store = DirectoryImageStore(str(tmp_path / "images"))

    token = await store.store(PIXEL_URL)
    assert token == hashlib.sha256(PIXEL).hexdigest()[:16]
    assert os.listdir(tmp_path / "images") == [token + ".png"]

    assert await store.store(PIXEL_URL) == token
    assert len(os.listdir(tmp_path / "images")) == 1
    assert await store.load(token) == PIXEL_URL


@pytest.mark.asyncio
async def test_directory_store_unknown_token(tmp_path):
    store = DirectoryImageStore(str(tmp_path))
    with pytest.raises(ImageNotFoundError):
        await store.load("0123456789abcdef")
    with pytest.raises(KeyError):
        await store.load("../../etc/passwd")


@pytest.mark.asyncio
async def test_directory_store_rejects_non_data_urls(tmp_path):
    store = DirectoryImageStore(str(tmp_path))
    with pytest.raises(ValueError):
        await store.store("https://example.com/a.png")


def test_write_and_read_pair(tmp_path):
    sidecar = update_sidecar_meta(create_empty_sidecar(), title="Notes")
    md_path, sidecar_path = write_pair("<!-- @mid:p -->\nhello", sidecar, str(tmp_path / "docs" / "notes"))

    assert md_path.endswith(os.path.join("docs", "notes.md"))
    assert sidecar_path.endswith(os.path.join("docs", "notes.sidecar.json"))

    markdown, loaded = read_pair(md_path)
    assert markdown == "<!-- @mid:p -->\nhello"
    assert loaded.meta.title == "Notes"


def test_missing_sidecar_means_no_formatting(tmp_path):
    md_path = tmp_path / "lonely.md"
    md_path.write_text("- Eggs\n", encoding="utf-8")
    markdown, sidecar = read_pair(str(md_path))
    assert markdown == "- Eggs\n"
    assert sidecar is None
