"""
shared/errors.py

Error taxonomy for the conversation orchestration layer.

Every error raised by a backend adapter, the RAG synchronizer or the orchestrator derives
from ChatServiceError, so API handlers can catch one type while still being able to tell a
missing token (ConfigurationError) from a rejected key (AuthenticationError), a remote failure
with an HTTP status (BackendError), an unreachable host (BackendConnectionError) or a response
that does not have the promised shape (ParseError).
"""

from __future__ import annotations

from typing import Optional


class ChatServiceError(Exception):
    """Base exception for all errors raised by the chat service layer."""


class ConfigurationError(ChatServiceError):
    """
    Raised when a chat configuration is missing or a backend cannot be built from the stored
    settings, for example because its API token is empty.
    """


class ChatNotFoundError(ConfigurationError):
    """Raised when no configuration exists for the requested chat id."""


class AuthenticationError(ChatServiceError):
    """Raised when a backend rejects the configured credentials (HTTP 401)."""


class BackendError(ChatServiceError):
    """
    Non-2xx response from a backend other than 401.

    The message is the backend's own `error.message` when the body carried one, otherwise
    "HTTP Error: <status>". The status code is kept so callers and metrics can tell 4xx from 5xx.
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class BackendConnectionError(ChatServiceError):
    """Transport-level failure: DNS, refused connection, TLS error or timeout."""


class ParseError(ChatServiceError):
    """Malformed JSON or a response that lacks a required field."""


class UnsupportedOperationError(ChatServiceError):
    """Raised when a RAG operation is invoked on a backend without that capability."""


class UploadError(ChatServiceError):
    """Raised when a file cannot be uploaded: local file missing, rejected by validation or by the remote side."""


class OrchestrationError(ChatServiceError):
    """
    Single user-facing error raised by the conversation orchestrator.

    It wraps whatever failed inside a turn (the original exception is chained as __cause__)
    so that callers never have to know the internal error types of the components.
    """
