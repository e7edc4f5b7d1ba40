"""
Tests for the RAMSES adapter: payload construction, context rendering, RAG upload/delete and
model listing. The HTTP transport is replaced by a MagicMock so only the adapter logic runs.
"""

import zlib
from unittest.mock import MagicMock

import pytest
import requests

from backends.ramses import (
    ENDPOINT_CHAT,
    ENDPOINT_RAG_CHAT,
    KNOWLEDGE_BASE_OPEN,
    RamsesBackend,
    numeric_id,
    parse_model_list,
)
from services.config_store import ConfigStore
from shared.errors import ConfigurationError, ParseError, UnsupportedOperationError
from shared.models import ContextResource, OutboundMessage, ResourceKind


@pytest.fixture
def http():
    client = MagicMock()
    client.endpoint_url.side_effect = lambda endpoint: "https://ramses.test" + endpoint
    client.execute_request.return_value = "answer"
    return client


@pytest.fixture
def ramses(http):
    store = ConfigStore({"ramses_temperature": 0.2})
    backend = RamsesBackend(store, model="m-1", api_key="k", streaming=True, http=http)
    backend.set_prompt("Be brief.")
    return backend


def history():
    return [OutboundMessage(role="user", content="What is in the file?")]


def text_resource(title="notes.txt", content="alpha"):
    return ContextResource(id="bg-text-1", kind=ResourceKind.TEXT_FILE, title=title, mime_type="text/plain", content=content)


def page_context_resource(text="Lecture 3 covers entropy."):
    return ContextResource(id="page-context", kind=ResourceKind.PAGE_CONTEXT, title="Page Context", mime_type="text/plain", content=text)


def image_resource():
    return ContextResource(
        id="bg-image-3", kind=ResourceKind.IMAGE_FILE, title="chart.png", mime_type="image/png", url="data:image/png;base64,BBBB"
    )


def page_resource():
    return ContextResource(
        id="bg-pdf-2-p1",
        kind=ResourceKind.PDF_PAGE,
        title="doc.pdf (Page 1)",
        mime_type="image/png",
        url="data:image/png;base64,AAAA",
        page_number=1,
        source_file="doc.pdf",
    )


def test_send_completion_payload(ramses, http):
    ramses.set_streaming(True)
    answer = ramses.send_completion(history())

    assert answer == "answer"
    url, payload = http.execute_request.call_args.args
    assert url == "https://ramses.test" + ENDPOINT_CHAT
    assert payload["model"] == "m-1"
    assert payload["stream"] is True
    assert payload["temperature"] == 0.2
    assert payload["messages"][0] == {"role": "system", "content": "Be brief."}
    assert payload["messages"][-1] == {"role": "user", "content": "What is in the file?"}


def test_context_resources_become_knowledge_base_turn(ramses, http):
    ramses.send_completion(history(), [text_resource(), page_resource()])

    messages = http.execute_request.call_args.args[1]["messages"]
    assert len(messages) == 3
    context = messages[1]
    assert context["role"] == "user"
    texts = [part["text"] for part in context["content"] if part["type"] == "text"]
    assert texts[0] == KNOWLEDGE_BASE_OPEN
    assert "Content:\nalpha" in texts
    assert any("Page: 1" in text and "Source: doc.pdf" in text for text in texts)
    images = [part for part in context["content"] if part["type"] == "image_url"]
    assert images == [{"type": "image_url", "image_url": {"url": "data:image/png;base64,AAAA", "detail": "high"}}]


def test_rag_completion_sends_collections_and_only_text_context(ramses, http):
    ramses.send_rag_completion(
        history(), ["col-1", "col-2"], [text_resource(), page_resource(), image_resource(), page_context_resource()]
    )

    url, payload = http.execute_request.call_args.args
    assert url == "https://ramses.test" + ENDPOINT_RAG_CHAT
    assert payload["collection_ids"] == ["col-1", "col-2"]
    context = payload["messages"][1]
    assert all(part["type"] == "text" for part in context["content"])
    texts = [part["text"] for part in context["content"]]
    assert "**notes.txt**\nalpha" in texts
    assert "**Page Context**\nLecture 3 covers entropy." in texts
    assert not any("doc.pdf" in text or "chart.png" in text for text in texts)


def test_rag_completion_keeps_page_context_alone(ramses, http):
    ramses.send_rag_completion(history(), ["col-1"], [page_context_resource()])

    messages = http.execute_request.call_args.args[1]["messages"]
    assert [m["role"] for m in messages] == ["system", "user", "user"]
    assert "entropy" in messages[1]["content"][1]["text"]


def test_rag_completion_without_text_resources_has_no_context_turn(ramses, http):
    ramses.send_rag_completion(history(), ["col-1"], [page_resource()])
    messages = http.execute_request.call_args.args[1]["messages"]
    assert [m["role"] for m in messages] == ["system", "user"]


def test_streaming_disabled_by_administrator(http):
    backend = RamsesBackend(ConfigStore(), api_key="k", streaming=False, http=http)
    backend.set_streaming(True)
    backend.send_completion(history())
    assert http.execute_request.call_args.args[1]["stream"] is False


def test_upload_uses_numeric_ids_and_returns_linkage(ramses, http, tmp_path):
    path = tmp_path / "notes.txt"
    path.write_text("hello")
    http.upload_file.return_value = {"collection_id": "col-9", "id": "file-3"}

    result = ramses.upload_to_rag(str(path), "chat-1")

    assert (result.collection_id, result.remote_file_id) == ("col-9", "file-3")
    _, sent_path, fields = http.upload_file.call_args.args[:3]
    assert sent_path == str(path)
    assert fields["entityid"] == zlib.crc32(b"chat-1") % 2147483647
    assert fields["applicationid"] == numeric_id("ILIAS", 2147483647)
    assert fields["instanceid"] == numeric_id("ilias9", 999999)
    assert fields["purpose"] == "assistants"


def test_numeric_id_is_deterministic():
    assert numeric_id("session-42", 2147483647) == numeric_id("session-42", 2147483647)
    assert 0 <= numeric_id("anything", 999999) < 999999


def test_upload_response_without_id_raises_parse_error(ramses, http, tmp_path):
    path = tmp_path / "notes.txt"
    path.write_text("hello")
    http.upload_file.return_value = {"collection_id": "col-9"}
    with pytest.raises(ParseError):
        ramses.upload_to_rag(str(path), "chat-1")


@pytest.mark.parametrize("status, expected", [(200, True), (204, True), (400, True), (500, False)])
def test_delete_status_handling(ramses, http, status, expected):
    http.post_json.return_value = MagicMock(status_code=status)
    assert ramses.delete_from_rag("file-3", "chat-1") is expected
    payload = http.post_json.call_args.args[1]
    assert payload == {"application_id": "ILIAS", "instance_id": "ilias9", "entity_id": "chat-1", "id": "file-3"}


def test_delete_transport_failure_returns_false(ramses, http):
    http.post_json.side_effect = requests.ConnectionError("down")
    assert ramses.delete_from_rag("file-3", "chat-1") is False


def test_parse_model_list_accepts_envelope_and_bare_list():
    envelope = {"object": "list", "data": [{"id": "a", "display_name": "Model A"}, {"id": "b"}]}
    assert parse_model_list(envelope) == {"a": "Model A", "b": "b"}
    assert parse_model_list([{"name": "c"}, "junk", {}]) == {"c": "c"}
    with pytest.raises(ParseError):
        parse_model_list({"models": []})


def test_refresh_models_caches_in_config_store(ramses, http):
    http.get_json.return_value = [{"id": "a", "name": "A"}]
    assert ramses.refresh_models() == {"a": "A"}
    assert ramses.cached_models() == {"a": "A"}


def test_rag_file_types_follow_configuration(http):
    store = ConfigStore({"ramses_rag_allowed_file_types": "txt, pdf"})
    backend = RamsesBackend(store, api_key="k", http=http)
    assert backend.allowed_file_types(True) == ["txt", "pdf"]
    assert backend.is_file_type_allowed(".PDF", True)
    assert not backend.is_file_type_allowed("png", True)
    assert backend.is_file_type_allowed("png", False)


def test_from_config_requires_token():
    with pytest.raises(ConfigurationError):
        RamsesBackend.from_config(ConfigStore())
    backend = RamsesBackend.from_config(ConfigStore({"ramses_api_token": "t", "ramses_selected_model": "x"}))
    assert backend.model == "x"
    assert backend.streaming_allowed


def test_base_rag_operations_raise_unsupported():
    from backends.openai_backend import OpenAIBackend

    backend = OpenAIBackend(ConfigStore(), api_key="k", client=MagicMock())
    with pytest.raises(UnsupportedOperationError):
        backend.upload_to_rag("/tmp/x.txt", "chat-1")
