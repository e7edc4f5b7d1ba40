"""
api/dependencies.py

Wiring of the stores, registry and services the routers depend on.

The application builds one `ServiceContainer` at startup and keeps it on `app.state.services`.
Routers reach it through the `get_services` dependency, so tests can swap the whole container
for one built around fakes without patching module globals.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.responses import JSONResponse

from backends.registry import BackendRegistry
from core.attachments import AttachmentService
from core.orchestrator import ConversationOrchestrator
from monitoring.metrics import ERROR_COUNT
from services.blob_store import LocalBlobStore
from services.chat_store import AttachmentStore, ChatStore
from services.config_store import ConfigStore, build_config_store
from services.image_optimizer import ImageOptimizer
from services.page_context import XmlPageTextExtractor
from shared.errors import (
    AuthenticationError,
    BackendConnectionError,
    BackendError,
    ChatNotFoundError,
    ConfigurationError,
    OrchestrationError,
    ParseError,
    UnsupportedOperationError,
    UploadError,
)

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    config_store: ConfigStore
    chat_store: ChatStore
    attachment_store: AttachmentStore
    blob_store: LocalBlobStore
    registry: BackendRegistry
    orchestrator: ConversationOrchestrator
    attachments: AttachmentService


def build_services(
    config: Dict[str, Any],
    env: Dict[str, Optional[str]],
    config_store: Optional[ConfigStore] = None,
    registry: Optional[BackendRegistry] = None,
) -> ServiceContainer:
    """
    Create the application's collaborators from CONFIG and ENV.

    Args:
        config (Dict[str, Any]): The global CONFIG mapping
        env (Dict[str, Optional[str]]): Secrets from the environment
        config_store (ConfigStore, optional): Pre-built store, mainly for tests
        registry (BackendRegistry, optional): Pre-built registry, mainly for tests

    Returns:
        ServiceContainer: Everything the routers need.
    """
    storage = config.get('storage', {})
    config_store = config_store or build_config_store(config, env)
    chat_store = ChatStore()
    attachment_store = AttachmentStore()
    blob_store = LocalBlobStore(storage.get('blob_dir_full_path', 'user_data/blobs'))
    registry = registry or BackendRegistry(config_store)
    image_optimizer = ImageOptimizer()
    page_text_extractor = XmlPageTextExtractor(storage.get('pages_dir_full_path'))

    orchestrator = ConversationOrchestrator(
        config_store,
        chat_store,
        attachment_store,
        blob_store,
        registry,
        image_optimizer=image_optimizer,
        page_text_extractor=page_text_extractor,
    )
    attachments = AttachmentService(config_store, chat_store, attachment_store, blob_store, registry)
    logger.info("Services initialized, enabled backends: %s", ", ".join(registry.enabled_backends()) or "none")
    return ServiceContainer(
        config_store=config_store,
        chat_store=chat_store,
        attachment_store=attachment_store,
        blob_store=blob_store,
        registry=registry,
        orchestrator=orchestrator,
        attachments=attachments,
    )


def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services


def error_status(exc: Exception) -> int:
    """HTTP status for an error raised by the services, looking through orchestration wrapping."""
    cause = exc.__cause__ if isinstance(exc, OrchestrationError) and exc.__cause__ else exc
    if isinstance(cause, (UploadError, ValueError)):
        return 400
    if isinstance(cause, ChatNotFoundError):
        return 404
    if isinstance(cause, ConfigurationError):
        return 400
    if isinstance(cause, (AuthenticationError, BackendError, BackendConnectionError, ParseError)):
        return 502
    if isinstance(cause, UnsupportedOperationError):
        return 400
    return 500


def error_response(exc: Exception, location: str) -> JSONResponse:
    status_code = error_status(exc)
    ERROR_COUNT.labels(type='api', location=location).inc()
    logger.error("%s failed with %d: %s", location, status_code, exc, exc_info=status_code >= 500)
    return JSONResponse({"error": str(exc)}, status_code=status_code)
