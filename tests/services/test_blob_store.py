"""Tests for the filesystem blob store; PDF rendering is monkeypatched so poppler is not needed."""

import io

import pytest
from PIL import Image

from services.blob_store import LocalBlobStore


@pytest.fixture
def store(tmp_path):
    return LocalBlobStore(str(tmp_path / "blobs"))


def test_store_and_read_back(store):
    info = store.store("My Notes.txt", b"hello", title="Notes")

    assert info.suffix == "txt"
    assert info.mime_type == "text/plain"
    assert info.size == 5
    assert store.info(info.resource_id) == info
    assert store.read_bytes(info.resource_id) == b"hello"


def test_unknown_resource(store):
    assert store.info("does-not-exist") is None
    assert store.read_bytes("does-not-exist") is None
    assert store.delete("does-not-exist") is False
    assert store.render_pdf_pages("does-not-exist") == []


def test_delete(store):
    info = store.store("a.md", b"# title")
    assert store.delete(info.resource_id) is True
    assert store.info(info.resource_id) is None


@pytest.mark.parametrize("resource_id", ["", "..", "../etc"])
def test_rejects_path_like_ids(store, resource_id):
    with pytest.raises(ValueError):
        store.info(resource_id)


def test_render_pdf_pages(store, monkeypatch):
    info = store.store("doc.pdf", b"%PDF-1.4")
    calls = {}

    def fake_convert(data, dpi, first_page, last_page):
        calls.update(data=data, dpi=dpi, first_page=first_page, last_page=last_page)
        return [Image.new("RGB", (10, 10)), Image.new("RGB", (10, 10))]

    monkeypatch.setattr("services.blob_store.convert_from_bytes", fake_convert)

    pages = store.render_pdf_pages(info.resource_id, max_pages=5)

    assert calls == {"data": b"%PDF-1.4", "dpi": 150, "first_page": 1, "last_page": 5}
    assert len(pages) == 2
    with Image.open(io.BytesIO(pages[0])) as page:
        assert page.format == "PNG"
