"""
OpenAI backend adapter (multimodal chat completions, no RAG).

This module is the single place where we talk to the OpenAI platform. It wraps the official
`openai` SDK instead of hand-building HTTP requests, and translates the SDK's exception types
into the service's error taxonomy so the orchestrator sees the same errors as for any other
backend. Streaming is not offered for this backend; answers are always returned whole.

Client creation is wrapped in `get_client()` instead of a module-level global: nothing is
built at import time, and tests can inject a fake client through the adapter constructor.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import openai
from openai import OpenAI

from monitoring.metrics import BACKEND_REQUEST_TIME, track_latency
from shared.errors import (
    AuthenticationError,
    BackendConnectionError,
    BackendError,
    ConfigurationError,
    ParseError,
)
from shared.models import (
    BackendCapabilities,
    ContextResource,
    ImageUrlPart,
    OutboundMessage,
    TextPart,
)
from .base import BackendAdapter, config_flag
from .streaming import StreamSink

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.openai.com"
DEFAULT_MODEL = "gpt-3.5-turbo"
DEFAULT_TEMPERATURE = 0.7

# Reasoning model families reject the temperature parameter
NO_TEMPERATURE_PREFIXES = ("o1", "o3")


def get_client(api_url: str, api_key: str, timeout: Optional[float] = None) -> OpenAI:
    """
    Build and return an OpenAI client for the configured endpoint.

    Args:
        api_url (str): Endpoint root without the version path, e.g. "https://api.openai.com"
        api_key (str): API key
        timeout (float, optional): Request timeout in seconds; None keeps the SDK default

    Returns:
        OpenAI: A ready-to-use client whose base URL points at `<api_url>/v1`.
    """
    kwargs: Dict[str, Any] = {
        "base_url": f"{(api_url or DEFAULT_API_URL).rstrip('/')}/v1",
        "api_key": api_key,
    }
    if timeout is not None:
        kwargs["timeout"] = timeout
    return OpenAI(**kwargs)


class OpenAIBackend(BackendAdapter):
    """
    OpenAI chat backend: vision-capable completions without retrieval collections.

    Args:
        config_store: Configuration store with `openai_*` keys
        model (str): Model identifier
        api_key (str): API key
        streaming (bool): Ignored beyond bookkeeping; the backend has no streaming capability
        client (OpenAI, optional): Injected SDK client, mainly for tests
    """

    service_id = "openai"
    service_name = "OpenAI"
    service_description = "OpenAI chat completions with image input"

    CAPABILITIES = BackendCapabilities(
        streaming=False,
        rag=False,
        multimodal=True,
        file_types=("txt", "md", "csv", "pdf", "jpg", "jpeg", "png", "gif", "webp"),
        rag_file_types=(),
        max_tokens=128000,
    )

    def __init__(
        self,
        config_store,
        model: str = DEFAULT_MODEL,
        api_key: str = "",
        streaming: bool = False,
        client: Optional[OpenAI] = None,
    ):
        super().__init__(config_store, model, api_key, streaming)
        self.client = client or get_client(config_store.get("openai_api_url") or DEFAULT_API_URL, api_key)

    def allowed_file_types(self, rag_enabled: bool) -> List[str]:
        if rag_enabled:
            return ["txt", "md", "csv", "pdf"]
        return ["png", "jpg", "jpeg", "webp", "gif", "pdf", "txt", "md", "csv"]

    def model_parameters(self) -> Dict[str, Any]:
        if self.model.startswith(NO_TEMPERATURE_PREFIXES):
            return {}
        temperature = self.config_store.get("openai_temperature") or DEFAULT_TEMPERATURE
        return {"temperature": float(temperature)}

    def build_context_message(self, context_resources: Optional[List[ContextResource]]) -> Optional[OutboundMessage]:
        """Text kinds become `**title**` blocks, image kinds become image parts."""
        parts: list = []
        for resource in context_resources or []:
            if resource.kind.is_text:
                parts.append(TextPart(text=f"**{resource.title}**\n{resource.content or ''}"))
            elif resource.url:
                parts.append(ImageUrlPart.from_url(resource.url))
        if not parts:
            return None
        return OutboundMessage(role="user", content=parts)

    @track_latency(BACKEND_REQUEST_TIME, labels=lambda self: {"backend": self.service_id, "operation": "chat"})
    def send_completion(
        self,
        messages: List[OutboundMessage],
        context_resources: Optional[List[ContextResource]] = None,
        sink: Optional[StreamSink] = None,
    ) -> str:
        wire_messages = self.build_messages(messages, self.build_context_message(context_resources))
        params = self.model_parameters()
        logger.debug(
            "OpenAI chat request: model=%s messages=%d parameters=%s",
            self.model,
            len(wire_messages),
            params,
        )
        try:
            completion = self.client.chat.completions.create(
                model=self.model,
                messages=wire_messages,
                stream=False,
                **params,
            )
        except openai.AuthenticationError as exc:
            raise AuthenticationError(exc.message) from exc
        except openai.APIStatusError as exc:
            raise BackendError(exc.message, status_code=exc.status_code) from exc
        except openai.APIConnectionError as exc:
            raise BackendConnectionError(f"Connection to OpenAI failed: {exc}") from exc

        try:
            content = completion.choices[0].message.content
        except (AttributeError, IndexError, TypeError) as exc:
            raise ParseError("Unexpected API response format: missing choices[0].message.content") from exc
        if content is None:
            raise ParseError("Unexpected API response format: empty message content")

        usage = getattr(completion, "usage", None)
        if usage is not None:
            logger.info(
                "Completion usage: prompt=%s completion=%s total=%s",
                getattr(usage, "prompt_tokens", None),
                getattr(usage, "completion_tokens", None),
                getattr(usage, "total_tokens", None),
            )
        return content

    @track_latency(BACKEND_REQUEST_TIME, labels=lambda self: {"backend": self.service_id, "operation": "models"})
    def list_models(self) -> Dict[str, str]:
        try:
            page = self.client.models.list()
        except openai.AuthenticationError as exc:
            raise AuthenticationError(exc.message) from exc
        except openai.APIStatusError as exc:
            raise BackendError(exc.message, status_code=exc.status_code) from exc
        except openai.APIConnectionError as exc:
            raise BackendConnectionError(f"Connection to OpenAI failed: {exc}") from exc
        return {model.id: model.id for model in page}

    @classmethod
    def from_config(cls, config_store) -> "OpenAIBackend":
        api_key = config_store.get("openai_api_token") or ""
        if not api_key:
            raise ConfigurationError("OpenAI API token not configured")
        return cls(
            config_store,
            model=config_store.get("openai_selected_model") or DEFAULT_MODEL,
            api_key=api_key,
            streaming=config_flag(config_store.get("openai_streaming_enabled", "0")),
        )
