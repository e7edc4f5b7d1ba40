"""
conftest.py – central pytest configuration, test bootstrap and shared fakes.

Purpose and behavior:
- Pytest imports this module before it collects any test files. We use that early import to:
  1) Extend `sys.path` with the project root directory so absolute-style imports like `from core ...`
     and `from shared ...` resolve without performing an editable install.
  2) Define safe default environment variables read at import time by the configuration layer:
     backend tokens, and an empty `LOG_FILE_PATH` so test runs do not write log files.
- It also provides small in-memory fakes for the collaborators of the conversation layer (blob store,
  image optimizer, backend adapter) and fixtures that build them, so test modules stay focused on
  behavior rather than wiring.
"""

import io
import os
import sys
from pathlib import Path

import pytest

# Ensure project root is on sys.path for direct imports like `core`, `shared`, etc.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# Provide required environment defaults for tests
os.environ.setdefault("RAMSES_API_TOKEN", "test-ramses-token")
os.environ.setdefault("OPENAI_API_TOKEN", "test-openai-token")
os.environ.setdefault("LOG_FILE_PATH", "")

from backends.base import BackendAdapter  # noqa: E402
from backends.streaming import format_chunk_event  # noqa: E402
from services.chat_store import AttachmentStore, ChatStore  # noqa: E402
from services.config_store import ConfigStore  # noqa: E402
from shared.models import BackendCapabilities, BlobInfo, RagUploadResult  # noqa: E402
from shared.utils import file_suffix, mime_for_suffix  # noqa: E402


class FakeBlobStore:
    """In-memory blob store; PDF pages are registered explicitly instead of being rendered."""

    def __init__(self):
        self.blobs = {}
        self.pdf_pages = {}
        self.deleted = []

    def add(self, resource_id, filename, data=b"", pages=None, title=None):
        suffix = file_suffix(filename)
        info = BlobInfo(
            resource_id=resource_id,
            filename=filename,
            title=title or filename,
            suffix=suffix,
            mime_type=mime_for_suffix(suffix),
            size=len(data),
        )
        self.blobs[resource_id] = (info, data)
        if pages is not None:
            self.pdf_pages[resource_id] = list(pages)
        return info

    def store(self, filename, data, title=None):
        return self.add(f"res-{len(self.blobs) + 1}", filename, data, title=title)

    def info(self, resource_id):
        entry = self.blobs.get(resource_id)
        return entry[0] if entry else None

    def read_bytes(self, resource_id):
        entry = self.blobs.get(resource_id)
        return entry[1] if entry else None

    def delete(self, resource_id):
        self.deleted.append(resource_id)
        return self.blobs.pop(resource_id, None) is not None

    def render_pdf_pages(self, resource_id, max_pages=20):
        return list(self.pdf_pages.get(resource_id, []))[:max_pages]


class PassThroughOptimizer:
    """Image optimizer that returns its input unchanged."""

    def optimize(self, data, mime_type):
        return data, mime_type


class FakeBackend(BackendAdapter):
    """
    Backend adapter recording every call. Capabilities default to full RAG support; RAG uploads
    return collection `col-1` and sequential file ids unless `upload_error` is set.
    """

    service_id = "fake"
    service_name = "Fake"
    CAPABILITIES = BackendCapabilities(
        streaming=True,
        rag=True,
        multimodal=True,
        file_types=("txt", "md", "csv", "pdf", "png", "jpg"),
        rag_file_types=("txt", "md", "csv", "pdf"),
    )

    def __init__(self, config_store=None, capabilities=None, response="assistant answer"):
        super().__init__(config_store or ConfigStore(), model="fake-model", api_key="key", streaming=True)
        if capabilities is not None:
            self.CAPABILITIES = capabilities
        self.response = response
        self.upload_error = None
        self.delete_result = True
        self.uploads = []
        self.deletes = []
        self.completions = []
        self.rag_completions = []

    def send_completion(self, messages, context_resources=None, sink=None):
        self.completions.append({"messages": messages, "context": context_resources, "sink": sink})
        if sink is not None:
            sink(format_chunk_event(self.response))
        return self.response

    def send_rag_completion(self, messages, collection_ids, context_resources=None, sink=None):
        if not self.supports_rag():
            return super().send_rag_completion(messages, collection_ids, context_resources, sink)
        self.rag_completions.append({"messages": messages, "collection_ids": collection_ids, "context": context_resources})
        return self.response

    def upload_to_rag(self, file_path, entity_id):
        with open(file_path, "rb") as f:
            content = f.read()
        self.uploads.append({"name": os.path.basename(file_path), "entity_id": entity_id, "content": content})
        if self.upload_error is not None:
            raise self.upload_error
        return RagUploadResult(collection_id="col-1", remote_file_id=f"file-{len(self.uploads)}")

    def delete_from_rag(self, remote_file_id, entity_id):
        self.deletes.append((remote_file_id, entity_id))
        if isinstance(self.delete_result, Exception):
            raise self.delete_result
        return self.delete_result

    def list_models(self):
        return {"fake-model": "Fake Model"}

    @classmethod
    def from_config(cls, config_store):
        return cls(config_store)


def png_bytes(size=(8, 8), color=(255, 0, 0), mode="RGB"):
    """Encode a solid-color image as PNG."""
    from PIL import Image

    buffer = io.BytesIO()
    Image.new(mode, size, color).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def config_store():
    return ConfigStore({
        "fake_service_enabled": "1",
        "fake_enable_rag": "1",
        "enable_file_uploads": "1",
        "allowed_file_types": "txt,md,csv,pdf,png,jpg",
        "max_upload_size_mb": 1,
    })


@pytest.fixture
def chat_store():
    return ChatStore()


@pytest.fixture
def attachment_store():
    return AttachmentStore()


@pytest.fixture
def blob_store():
    return FakeBlobStore()


@pytest.fixture
def optimizer():
    return PassThroughOptimizer()


@pytest.fixture
def backend(config_store):
    return FakeBackend(config_store)
