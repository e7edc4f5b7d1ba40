"""
API tests for the chat endpoints.

The app is built through `create_app` around a ServiceContainer of in-memory stores and a
registry that only knows the recording FakeBackend, so every request runs the real routers,
orchestrator and attachment service without any network access.
"""

import json

import pytest
from fastapi.testclient import TestClient

from api.dependencies import ServiceContainer
from backends.registry import BackendRegistry
from conftest import FakeBackend, PassThroughOptimizer
from core.attachments import AttachmentService
from core.orchestrator import ConversationOrchestrator
from main import create_app


@pytest.fixture
def services(config_store, chat_store, attachment_store, blob_store):
    registry = BackendRegistry(config_store, adapters={"fake": FakeBackend})
    return ServiceContainer(
        config_store=config_store,
        chat_store=chat_store,
        attachment_store=attachment_store,
        blob_store=blob_store,
        registry=registry,
        orchestrator=ConversationOrchestrator(
            config_store, chat_store, attachment_store, blob_store, registry, image_optimizer=PassThroughOptimizer()
        ),
        attachments=AttachmentService(config_store, chat_store, attachment_store, blob_store, registry),
    )


@pytest.fixture
def client(services):
    return TestClient(create_app(services))


def create_chat(client, **overrides):
    body = {"ai_service": "fake", "system_prompt": "Be brief", "char_limit": 50}
    body.update(overrides)
    response = client.put("/api/chats/chat-1", json=body)
    assert response.status_code == 200
    return response.json()


def sse_events(text):
    return [json.loads(block[len("data: "):]) for block in text.split("\n\n") if block.startswith("data: ")]


def test_save_chat_config_keeps_collection_id(client, chat_store):
    create_chat(client)
    chat_store.set_rag_collection_id("chat-1", "col-1")

    body = create_chat(client, title="Renamed")

    assert body["config"]["title"] == "Renamed"
    assert body["config"]["rag_collection_id"] == "col-1"


def test_send_message(client):
    create_chat(client)

    response = client.post("/api/chats/chat-1/messages", json={"user_id": 7, "message": "Hello"})

    assert response.status_code == 200
    assert response.json() == {"success": True, "message": "assistant answer"}

    loaded = client.get("/api/chats/chat-1", params={"user_id": 7}).json()
    assert [m["message"] for m in loaded["messages"]] == ["Hello", "assistant answer"]


def test_send_message_validation(client):
    assert client.post("/api/chats/missing/messages", json={"user_id": 7, "message": "Hi"}).status_code == 404

    create_chat(client)
    too_long = client.post("/api/chats/chat-1/messages", json={"user_id": 7, "message": "x" * 51})
    assert too_long.status_code == 400
    assert "50 characters" in too_long.json()["error"]

    empty = client.post("/api/chats/chat-1/messages", json={"user_id": 7, "message": ""})
    assert empty.status_code == 422


def test_disabled_backend_is_client_error(client, config_store):
    create_chat(client)
    config_store.set("fake_service_enabled", "0")

    response = client.post("/api/chats/chat-1/messages", json={"user_id": 7, "message": "Hi"})

    assert response.status_code == 400
    assert "not enabled" in response.json()["error"]


def test_stream_message_event_sequence(client):
    create_chat(client, enable_streaming=True)

    response = client.post("/api/chats/chat-1/messages/stream", json={"user_id": 7, "message": "Hi"})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    events = sse_events(response.text)
    assert events[0] == {"type": "start"}
    assert events[1] == {"type": "chunk", "content": "assistant answer"}
    assert events[-1] == {"type": "complete", "message": "assistant answer"}


def test_stream_message_reports_errors_as_event(client, config_store):
    create_chat(client)
    config_store.set("fake_service_enabled", "0")

    events = sse_events(client.post("/api/chats/chat-1/messages/stream", json={"user_id": 7, "message": "Hi"}).text)

    assert events[0] == {"type": "start"}
    assert events[-1]["type"] == "error"
    assert "Failed to send message" in events[-1]["error"]


def test_upload_send_and_delete_attachment(client, attachment_store):
    create_chat(client)

    upload = client.post(
        "/api/chats/chat-1/attachments",
        files={"file": ("notes.txt", b"hello", "text/plain")},
        data={"user_id": "7"},
    )
    assert upload.status_code == 200
    attachment = upload.json()["attachment"]
    assert attachment["title"] == "notes.txt"
    assert attachment["background_file"] is False

    sent = client.post(
        "/api/chats/chat-1/messages",
        json={"user_id": 7, "message": "See file", "attachment_ids": [attachment["id"]]},
    )
    assert sent.status_code == 200
    assert attachment_store.get(attachment["id"]).message_id is not None

    assert client.delete(f"/api/attachments/{attachment['id']}").status_code == 200
    assert client.delete(f"/api/attachments/{attachment['id']}").status_code == 404


def test_background_upload_and_rejection(client):
    create_chat(client)

    background = client.post(
        "/api/chats/chat-1/attachments",
        files={"file": ("guide.pdf", b"%PDF-1.4", "application/pdf")},
        data={"user_id": "1", "background": "true"},
    )
    assert background.status_code == 200
    assert background.json()["attachment"]["background_file"] is True

    rejected = client.post(
        "/api/chats/chat-1/attachments",
        files={"file": ("tool.exe", b"MZ", "application/octet-stream")},
        data={"user_id": "7"},
    )
    assert rejected.status_code == 400
    assert "not allowed" in rejected.json()["error"]


def test_clear_chat(client, chat_store):
    create_chat(client)
    client.post("/api/chats/chat-1/messages", json={"user_id": 7, "message": "Hi"})

    response = client.delete("/api/chats/chat-1/session", params={"user_id": 7})

    assert response.status_code == 200
    assert chat_store.find_session(7, "chat-1") is None


def test_upload_config(client):
    create_chat(client, enable_rag=True)

    body = client.get("/api/chats/chat-1/upload-config").json()

    assert body["success"] is True
    assert body["rag_mode"] is True
    assert body["allowed_extensions"] == ["txt", "md", "csv", "pdf"]
    assert client.get("/api/chats/missing/upload-config").status_code == 404
