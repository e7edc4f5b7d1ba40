"""
Backend-agnostic adapter interface for AI chat services.

This module defines the contract that every concrete AI backend must fulfill in order to be
used by the conversation orchestrator. The design uses the adapter pattern to separate the
turn-processing logic from provider-specific concerns like authentication, endpoint paths,
payload dialects, and response normalization. Backends differ in what they can do (retrieval-
augmented generation, streaming, multimodal input), so instead of a deep class hierarchy each
adapter declares its abilities through `capabilities()` and the predicates derived from it.

Key concepts and abbreviations:
- RAG: Retrieval-Augmented Generation. File content is indexed in a remote collection and the
  backend retrieves from it at query time, instead of receiving the file inline.
- ABC: Abstract Base Class, a Python mechanism for defining interfaces via abstract methods.
- Context resource: an ephemeral unit of background information (text file, image, PDF page,
  page text) that is injected as one extra user turn ahead of the conversation history.

Operations that only RAG-capable backends support (`send_rag_completion`, `upload_to_rag`,
`delete_from_rag`) have default implementations that raise UnsupportedOperationError, so a
multimodal-only adapter only implements what it actually speaks.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from shared.errors import UnsupportedOperationError
from shared.models import (
    BackendCapabilities,
    ContextResource,
    OutboundMessage,
    RagUploadResult,
)
from .streaming import StreamSink

logger = logging.getLogger(__name__)


def config_flag(value: Any) -> bool:
    """Interpret a stored configuration flag ("1", 1, True, "true") as a boolean."""
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in ("1", "true", "yes", "on")


class BackendAdapter(ABC):
    """
    Abstract client defining the operations the orchestrator relies on.

    Implementations are responsible for all backend-specific details: endpoint layout, payload
    parameters (for example, some model families reject a temperature), how context resources
    are rendered into the leading context turn, and how errors are classified. The calling code
    only relies on the shapes documented here.

    Args:
        config_store: Key-value configuration store holding `<service_id>_*` settings
        model (str): Model identifier sent with every request
        api_key (str): Bearer token for the backend
        streaming (bool): Whether the administrator allows streamed completions for this backend
    """

    service_id: str = ""
    service_name: str = ""
    service_description: str = ""
    CAPABILITIES = BackendCapabilities(streaming=False, rag=False, multimodal=False)

    def __init__(self, config_store, model: str, api_key: str, streaming: bool = False):
        self.config_store = config_store
        self.model = model
        self.api_key = api_key
        self.streaming_allowed = bool(streaming)
        self.streaming = False
        self.prompt = ""

    # --- Capabilities ---

    def capabilities(self) -> BackendCapabilities:
        """Return the static capability flags of this backend."""
        return self.CAPABILITIES

    def supports_rag(self) -> bool:
        return self.capabilities().rag

    def supports_multimodal(self) -> bool:
        return self.capabilities().multimodal

    def supports_streaming(self) -> bool:
        return self.capabilities().streaming

    def allowed_file_types(self, rag_enabled: bool) -> List[str]:
        """
        Extensions a user may upload to a chat in the given mode.

        Args:
            rag_enabled (bool): Whether the chat is in RAG mode

        Returns:
            List[str]: Lower-case extensions without dots.
        """
        caps = self.capabilities()
        return list(caps.rag_file_types if rag_enabled else caps.file_types)

    def is_file_type_allowed(self, extension: str, rag_enabled: bool) -> bool:
        return extension.lower().lstrip(".") in self.allowed_file_types(rag_enabled)

    def allowed_file_types_description(self, rag_enabled: bool) -> str:
        return ", ".join(f".{ext}" for ext in self.allowed_file_types(rag_enabled))

    # --- Per-turn settings ---

    def set_prompt(self, prompt: Optional[str]) -> None:
        self.prompt = prompt or ""

    def set_streaming(self, streaming: bool) -> None:
        """Request a streamed answer for the next call, if the backend and its settings allow it."""
        self.streaming = bool(streaming) and self.streaming_allowed and self.supports_streaming()

    def model_parameters(self) -> Dict[str, Any]:
        """Backend-specific payload parameters merged into every chat request."""
        return {}

    def build_messages(
        self,
        messages: List[OutboundMessage],
        context_message: Optional[OutboundMessage] = None,
    ) -> List[Dict[str, Any]]:
        """
        Assemble the wire `messages` array shared by all backends.

        Order: optional system message (configured prompt), optional context user turn, then the
        formatted conversation history.
        """
        wire: List[Dict[str, Any]] = []
        if self.prompt:
            wire.append({"role": "system", "content": self.prompt})
        if context_message is not None:
            wire.append(context_message.to_wire())
        wire.extend(message.to_wire() for message in messages)
        return wire

    # --- Chat ---

    @abstractmethod
    def send_completion(
        self,
        messages: List[OutboundMessage],
        context_resources: Optional[List[ContextResource]] = None,
        sink: Optional[StreamSink] = None,
    ) -> str:
        """
        Send a standard (non-RAG) chat completion.

        Context resources are injected as one additional leading user turn: text parts for text
        files and page context, image parts for images and PDF pages.

        Args:
            messages (List[OutboundMessage]): Formatted conversation history
            context_resources (List[ContextResource], optional): Background context for this turn
            sink (StreamSink, optional): Receives chunk events when streaming

        Returns:
            str: The assistant's answer.
        """
        raise NotImplementedError

    def send_rag_completion(
        self,
        messages: List[OutboundMessage],
        collection_ids: List[str],
        context_resources: Optional[List[ContextResource]] = None,
        sink: Optional[StreamSink] = None,
    ) -> str:
        """
        Send a retrieval-augmented completion against the given collections.

        Only text-kind context resources are included; images and PDFs are expected to be
        indexed in the collections already.

        Raises:
            UnsupportedOperationError: When the backend has no RAG capability.
        """
        raise UnsupportedOperationError(f"{self.service_id} does not support RAG completions")

    def upload_to_rag(self, file_path: str, entity_id: str) -> RagUploadResult:
        """
        Upload a local file into the backend's retrieval store.

        Args:
            file_path (str): Path of a local file whose name carries the original filename
            entity_id (str): Logical owner of the file (chat id or session id)

        Returns:
            RagUploadResult: Collection id and remote file id assigned by the backend.

        Raises:
            UnsupportedOperationError: When the backend has no RAG capability.
        """
        raise UnsupportedOperationError(f"{self.service_id} does not support RAG uploads")

    def delete_from_rag(self, remote_file_id: str, entity_id: str) -> bool:
        """
        Remove a previously uploaded file from the retrieval store.

        Returns:
            bool: True when the remote side confirmed (or tolerated) the deletion.

        Raises:
            UnsupportedOperationError: When the backend has no RAG capability.
        """
        raise UnsupportedOperationError(f"{self.service_id} does not support RAG deletion")

    # --- Models ---

    @abstractmethod
    def list_models(self) -> Dict[str, str]:
        """Return the backend's models as an ordered mapping of model id to display name."""
        raise NotImplementedError

    def refresh_models(self) -> Dict[str, str]:
        """Fetch the model list and cache it in the configuration store under `<service_id>_cached_models`."""
        models = self.list_models()
        self.config_store.set(f"{self.service_id}_cached_models", models)
        logger.info("Cached %d models for %s", len(models), self.service_id)
        return models

    def cached_models(self) -> Dict[str, str]:
        cached = self.config_store.get(f"{self.service_id}_cached_models")
        return dict(cached) if isinstance(cached, dict) else {}

    @classmethod
    @abstractmethod
    def from_config(cls, config_store) -> "BackendAdapter":
        """
        Build an adapter from the `<service_id>_*` keys in the configuration store.

        Raises:
            ConfigurationError: When the API token is not configured.
        """
        raise NotImplementedError
