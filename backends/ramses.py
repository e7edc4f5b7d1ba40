"""
RAMSES backend adapter (retrieval-augmented, streaming, multimodal).

RAMSES speaks the OpenAI chat-completions dialect for standard chat and adds three RAG
endpoints: a multipart upload that places a file into a per-entity collection, a RAG
completion endpoint that takes `collection_ids`, and a delete endpoint. The retrieval store
only accepts integer identifiers for application, instance and entity, so the textual ids we
use are folded into integers with CRC32 (see `numeric_id`). That mapping is deterministic and
wire-compatible with earlier uploads, but a 31-bit (and, for instances, 999,999) modulus range
can collide for distinct inputs; collisions are silent on the remote side.
"""

from __future__ import annotations

import logging
import os
import zlib
from typing import Any, Dict, List, Optional

import requests

from monitoring.metrics import BACKEND_REQUEST_TIME, RAG_UPLOAD_COUNT, track_latency
from shared.errors import ConfigurationError, ParseError, UploadError
from shared.models import (
    BackendCapabilities,
    ContextResource,
    ImageUrlPart,
    OutboundMessage,
    RagUploadResult,
    TextPart,
)
from .base import BackendAdapter, config_flag
from .http import DELETE_TIMEOUT, MODELS_TIMEOUT, UPLOAD_TIMEOUT, BackendHttpClient
from .streaming import StreamSink

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://ramses-oski.itcc.uni-koeln.de"
DEFAULT_MODEL = "swiss-ai-apertus-70b-instruct-2509"
DEFAULT_TEMPERATURE = 0.7
DEFAULT_APPLICATION_ID = "ILIAS"
DEFAULT_INSTANCE_ID = "ilias9"
DEFAULT_RAG_FILE_TYPES = ("txt", "md", "csv", "pdf")

ENDPOINT_CHAT = "/v1/chat/completions"
ENDPOINT_MODELS = "/v1/models"
ENDPOINT_RAG_CHAT = "/v1/rag/completions"
ENDPOINT_RAG_UPLOAD = "/v1/rag/upload"
ENDPOINT_RAG_DELETE = "/v1/rag/delete"

# Statuses the delete endpoint may answer for a file that is gone afterwards
DELETE_SUCCESS_STATUSES = (200, 204, 400)

KNOWLEDGE_BASE_OPEN = "[BEGIN KNOWLEDGE BASE CONTEXT]\n"
KNOWLEDGE_BASE_CLOSE = (
    "[END KNOWLEDGE BASE CONTEXT]\n"
    "You may refer to this context when answering future questions."
)
ADDITIONAL_TEXT_CONTEXT = "[ADDITIONAL TEXT CONTEXT]\n"


def numeric_id(value: str, modulus: int) -> int:
    """Fold a textual identifier into the integer range the retrieval store accepts."""
    return abs(zlib.crc32(str(value).encode("utf-8"))) % modulus


def parse_model_list(body: Any) -> Dict[str, str]:
    """
    Normalize a model listing into `{model_id: display_name}`.

    Accepts a bare list or an OpenAI-style `{"object": "list", "data": [...]}` envelope. Each
    entry is identified by `id` (or `name`) and displayed as `display_name`, `name` or the id.
    """
    if isinstance(body, dict) and body.get("object") == "list":
        entries = body.get("data") or []
    elif isinstance(body, list):
        entries = body
    else:
        raise ParseError("Unexpected model list format")

    models: Dict[str, str] = {}
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        model_id = entry.get("id") or entry.get("name")
        if not model_id:
            continue
        models[str(model_id)] = str(entry.get("display_name") or entry.get("name") or model_id)
    return models


class RamsesBackend(BackendAdapter):
    """
    RAMSES chat backend with RAG collections.

    Args:
        config_store: Configuration store with `ramses_*` keys
        model (str): Model identifier
        api_key (str): Bearer token
        streaming (bool): Whether streamed completions are allowed by the administrator
        http (BackendHttpClient, optional): Injected transport, mainly for tests
    """

    service_id = "ramses"
    service_name = "RAMSES"
    service_description = "RAMSES chat completions with retrieval-augmented generation"

    CAPABILITIES = BackendCapabilities(
        streaming=True,
        rag=True,
        multimodal=True,
        file_types=("txt", "md", "csv", "pdf", "jpg", "jpeg", "png", "gif", "webp"),
        rag_file_types=DEFAULT_RAG_FILE_TYPES,
        max_tokens=None,
    )

    def __init__(
        self,
        config_store,
        model: str = DEFAULT_MODEL,
        api_key: str = "",
        streaming: bool = False,
        http: Optional[BackendHttpClient] = None,
    ):
        super().__init__(config_store, model, api_key, streaming)
        base_url = config_store.get("ramses_api_url") or DEFAULT_API_URL
        self.http = http or BackendHttpClient(base_url, api_key)

    def allowed_file_types(self, rag_enabled: bool) -> List[str]:
        if not rag_enabled:
            return ["png", "jpg", "jpeg", "webp", "gif", "pdf", "txt", "md", "csv"]
        configured = self.config_store.get("ramses_rag_allowed_file_types")
        if isinstance(configured, str):
            configured = [part.strip().lower() for part in configured.split(",")]
        if isinstance(configured, (list, tuple)):
            types = [str(part).strip().lower() for part in configured if str(part).strip()]
            if types:
                return types
        return list(DEFAULT_RAG_FILE_TYPES)

    def model_parameters(self) -> Dict[str, Any]:
        temperature = self.config_store.get("ramses_temperature") or DEFAULT_TEMPERATURE
        return {"temperature": float(temperature)}

    # --- Context rendering ---

    def build_context_message(self, context_resources: Optional[List[ContextResource]]) -> Optional[OutboundMessage]:
        """Render all context resources as one knowledge-base user turn."""
        if not context_resources:
            return None

        parts: list = [TextPart(text=KNOWLEDGE_BASE_OPEN)]
        for resource in context_resources:
            description = f"**{resource.title}** ({resource.kind.value})"
            metadata = []
            if resource.mime_type:
                metadata.append(f"Type: {resource.mime_type}")
            if resource.page_number is not None:
                metadata.append(f"Page: {resource.page_number}")
            if resource.source_file:
                metadata.append(f"Source: {resource.source_file}")
            if metadata:
                description += " [" + ", ".join(metadata) + "]"
            parts.append(TextPart(text=description))

            if resource.kind.is_text:
                parts.append(TextPart(text="Content:\n" + (resource.content or "")))
            elif resource.url:
                parts.append(ImageUrlPart.from_url(resource.url, detail="high"))

            parts.append(TextPart(text="---"))
        parts.append(TextPart(text=KNOWLEDGE_BASE_CLOSE))
        return OutboundMessage(role="user", content=parts)

    def build_rag_context_message(self, context_resources: Optional[List[ContextResource]]) -> Optional[OutboundMessage]:
        """Render text files and page context; images and PDFs are served from the collection."""
        text_files = [r for r in (context_resources or []) if r.kind.is_text]
        if not text_files:
            return None
        parts: list = [TextPart(text=ADDITIONAL_TEXT_CONTEXT)]
        parts.extend(TextPart(text=f"**{r.title}**\n{r.content or ''}") for r in text_files)
        return OutboundMessage(role="user", content=parts)

    # --- Chat ---

    @track_latency(BACKEND_REQUEST_TIME, labels=lambda self: {"backend": self.service_id, "operation": "chat"})
    def send_completion(
        self,
        messages: List[OutboundMessage],
        context_resources: Optional[List[ContextResource]] = None,
        sink: Optional[StreamSink] = None,
    ) -> str:
        wire_messages = self.build_messages(messages, self.build_context_message(context_resources))
        payload = {
            "messages": wire_messages,
            "model": self.model,
            "stream": self.streaming,
        }
        payload.update(self.model_parameters())
        logger.debug(
            "RAMSES chat request: model=%s messages=%d context=%s stream=%s",
            self.model,
            len(wire_messages),
            bool(context_resources),
            self.streaming,
        )
        return self.http.execute_request(self.http.endpoint_url(ENDPOINT_CHAT), payload, sink=sink)

    @track_latency(BACKEND_REQUEST_TIME, labels=lambda self: {"backend": self.service_id, "operation": "rag_chat"})
    def send_rag_completion(
        self,
        messages: List[OutboundMessage],
        collection_ids: List[str],
        context_resources: Optional[List[ContextResource]] = None,
        sink: Optional[StreamSink] = None,
    ) -> str:
        wire_messages = self.build_messages(messages, self.build_rag_context_message(context_resources))
        payload = {
            "model": self.model,
            "messages": wire_messages,
            "collection_ids": list(collection_ids),
            "stream": self.streaming,
        }
        payload.update(self.model_parameters())
        logger.debug(
            "RAMSES RAG chat request: model=%s collections=%s messages=%d stream=%s",
            self.model,
            list(collection_ids),
            len(wire_messages),
            self.streaming,
        )
        return self.http.execute_request(self.http.endpoint_url(ENDPOINT_RAG_CHAT), payload, sink=sink)

    # --- RAG store ---

    def _application_id(self) -> str:
        return str(self.config_store.get("ramses_application_id") or DEFAULT_APPLICATION_ID)

    def _instance_id(self) -> str:
        return str(self.config_store.get("ramses_instance_id") or DEFAULT_INSTANCE_ID)

    @track_latency(BACKEND_REQUEST_TIME, labels=lambda self: {"backend": self.service_id, "operation": "rag_upload"})
    def upload_to_rag(self, file_path: str, entity_id: str) -> RagUploadResult:
        """
        Upload a file into the entity's RAG collection.

        The multipart form carries the file under its original name (the remote side checks the
        file signature against the extension) plus the numeric application, instance and entity
        ids derived from their textual counterparts.

        Args:
            file_path (str): Local file path
            entity_id (str): Chat id for background files, session id for direct chat uploads

        Returns:
            RagUploadResult: `collection_id` and remote file `id` from the response.

        Raises:
            UploadError: Missing local file or non-200 response.
            BackendConnectionError: Transport failure.
            ParseError: Response lacks `collection_id` or `id`.
        """
        if not os.path.isfile(file_path):
            RAG_UPLOAD_COUNT.labels(backend=self.service_id, status="failure").inc()
            raise UploadError(f"File not found: {file_path}")

        fields = {
            "applicationid": numeric_id(self._application_id(), 2147483647),
            "instanceid": numeric_id(self._instance_id(), 999999),
            "entityid": numeric_id(entity_id, 2147483647),
            "purpose": "assistants",
        }
        logger.info(
            "Uploading %s to RAG for entity %s",
            os.path.basename(file_path),
            entity_id,
            extra={"numeric_ids": fields},
        )
        try:
            body = self.http.upload_file(
                self.http.endpoint_url(ENDPOINT_RAG_UPLOAD),
                file_path,
                fields,
                timeout=UPLOAD_TIMEOUT,
            )
            if not body.get("collection_id") or not body.get("id"):
                raise ParseError("RAG upload response missing collection_id or id")
        except Exception:
            RAG_UPLOAD_COUNT.labels(backend=self.service_id, status="failure").inc()
            raise

        RAG_UPLOAD_COUNT.labels(backend=self.service_id, status="success").inc()
        return RagUploadResult(collection_id=str(body["collection_id"]), remote_file_id=str(body["id"]))

    def delete_from_rag(self, remote_file_id: str, entity_id: str) -> bool:
        """
        Delete a file from the RAG store; never raises for remote or transport failures.

        HTTP 200 and 204 are success; 400 is tolerated as success as well because the remote
        side answers 400 for files that are already gone. Anything else returns False.
        """
        payload = {
            "application_id": self._application_id(),
            "instance_id": self._instance_id(),
            "entity_id": str(entity_id),
            "id": str(remote_file_id),
        }
        try:
            response = self.http.post_json(
                self.http.endpoint_url(ENDPOINT_RAG_DELETE),
                payload,
                timeout=DELETE_TIMEOUT,
            )
        except requests.RequestException as exc:
            logger.warning("RAG delete transport failure for file %s: %s", remote_file_id, exc)
            return False

        if response.status_code in DELETE_SUCCESS_STATUSES:
            logger.info("RAG file %s deleted (HTTP %d)", remote_file_id, response.status_code)
            return True
        logger.warning(
            "RAG delete for file %s failed with HTTP %d",
            remote_file_id,
            response.status_code,
            extra={"entity_id": entity_id},
        )
        return False

    # --- Models ---

    @track_latency(BACKEND_REQUEST_TIME, labels=lambda self: {"backend": self.service_id, "operation": "models"})
    def list_models(self) -> Dict[str, str]:
        body = self.http.get_json(self.http.endpoint_url(ENDPOINT_MODELS), timeout=MODELS_TIMEOUT)
        return parse_model_list(body)

    @classmethod
    def from_config(cls, config_store) -> "RamsesBackend":
        api_key = config_store.get("ramses_api_token") or ""
        if not api_key:
            raise ConfigurationError("RAMSES API token not configured")
        return cls(
            config_store,
            model=config_store.get("ramses_selected_model") or DEFAULT_MODEL,
            api_key=api_key,
            streaming=config_flag(config_store.get("ramses_streaming_enabled", "1")),
        )
