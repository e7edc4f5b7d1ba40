"""
Tests for `core/rag_sync.py`.

Uses the FakeBackend from conftest, which records every upload (temp file name, entity id and
content) and returns collection `col-1`.
"""

import os

import pytest

from core.rag_sync import RagSynchronizer
from shared.errors import ParseError
from shared.models import ChatConfiguration


@pytest.fixture
def chat(chat_store):
    config = ChatConfiguration(chat_id="chat-1", enable_rag=True)
    chat_store.save_chat_config(config)
    return config


@pytest.fixture
def sync(attachment_store, blob_store, chat_store):
    return RagSynchronizer(attachment_store, blob_store, chat_store)


def test_background_sync_uploads_once(sync, chat, backend, attachment_store, blob_store, chat_store):
    blob_store.add("r-txt", "notes.txt", b"alpha")
    attachment = attachment_store.create("chat-1", 7, "r-txt", background_file=True)

    first = sync.sync_background_files(chat, backend)
    second = sync.sync_background_files(chat, backend)

    assert first.to_dict() == {"uploaded": 1, "skipped": 0, "errors": 0}
    assert second.to_dict() == {"uploaded": 0, "skipped": 1, "errors": 0}
    assert len(backend.uploads) == 1
    upload = backend.uploads[0]
    assert upload["entity_id"] == "chat-1"
    assert upload["content"] == b"alpha"
    assert upload["name"].startswith("rag_sync_") and upload["name"].endswith("_notes.txt")

    stored = attachment_store.get(attachment.id)
    assert stored.rag.collection_id == "col-1"
    assert stored.rag.remote_file_id == "file-1"
    assert stored.rag.uploaded_at
    assert chat_store.get_chat_config("chat-1").rag_collection_id == "col-1"


def test_incompatible_types_are_skipped(sync, chat, backend, attachment_store, blob_store):
    blob_store.add("r-img", "photo.png", b"\x89PNG")
    attachment_store.create("chat-1", 7, "r-img", background_file=True)
    attachment_store.create("chat-1", 7, "missing-blob", background_file=True)

    stats = sync.sync_background_files(chat, backend)

    assert stats.to_dict() == {"uploaded": 0, "skipped": 2, "errors": 0}
    assert backend.uploads == []


def test_failed_upload_leaves_linkage_unset(sync, chat, backend, attachment_store, blob_store, chat_store):
    blob_store.add("r-pdf", "doc.pdf", b"%PDF-1.4")
    attachment = attachment_store.create("chat-1", 7, "r-pdf", background_file=True)
    backend.upload_error = ParseError("RAG upload response missing collection_id or id")

    stats = sync.sync_background_files(chat, backend)

    assert stats.errors == 1
    assert attachment_store.get(attachment.id).rag is None
    assert chat_store.get_chat_config("chat-1").rag_collection_id is None


def test_temp_file_is_removed(sync, chat, backend, attachment_store, blob_store, monkeypatch):
    blob_store.add("r-txt", "notes.txt", b"alpha")
    attachment_store.create("chat-1", 7, "r-txt", background_file=True)
    seen = []
    original = backend.upload_to_rag

    def spy(path, entity_id):
        seen.append(path)
        return original(path, entity_id)

    monkeypatch.setattr(backend, "upload_to_rag", spy)
    sync.sync_background_files(chat, backend)

    assert seen and not os.path.exists(seen[0])


def test_chat_attachment_sync_uses_window(sync, chat, backend, attachment_store, blob_store, chat_store):
    session = chat_store.get_or_create_session(7, "chat-1")
    old = chat_store.add_message(session.session_id, "user", "old")
    recent = chat_store.add_message(session.session_id, "user", "recent")
    blob_store.add("r-old", "old.txt", b"old")
    blob_store.add("r-new", "new.txt", b"new")
    attachment_store.create("chat-1", 7, "r-old", message_id=old.message_id)
    attachment_store.create("chat-1", 7, "r-new", message_id=recent.message_id)

    stats = sync.sync_chat_attachments(session, window_size=1, backend=backend)

    assert stats.uploaded == 1
    assert [u["content"] for u in backend.uploads] == [b"new"]
    assert backend.uploads[0]["entity_id"] == "chat-1"


def test_chat_attachment_sync_short_circuits(sync, chat, backend, attachment_store, blob_store, chat_store):
    session = chat_store.get_or_create_session(7, "chat-1")
    assert sync.sync_chat_attachments(session, 10, backend).to_dict() == {"uploaded": 0, "skipped": 0, "errors": 0}

    message = chat_store.add_message(session.session_id, "user", "q")
    blob_store.add("r-txt", "a.txt", b"a")
    attachment = attachment_store.create("chat-1", 7, "r-txt", message_id=message.message_id)
    attachment.link_to_rag("col-1", "file-9")
    attachment_store.save(attachment)

    assert sync.sync_chat_attachments(session, 10, backend).skipped == 1
    assert backend.uploads == []
