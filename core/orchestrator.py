"""
core/orchestrator.py

Central coordinator for one send-message turn.

This module contains the main coordination logic that:
1. Loads the chat configuration and selects the backend adapter
2. Records the user message and binds its attachments
3. Decides between RAG mode and multimodal mode for this turn
4. Assembles background context and formats the conversation history
5. Keeps the remote retrieval store in step with local attachments
6. Dispatches the request (streamed or whole) and records the answer

Every failure inside the turn is logged with the chat id, user id and the stage that failed,
and surfaces to the caller as a single OrchestrationError chained from the original error.
"""

from __future__ import annotations

import logging
import time
from typing import Iterable, List, Optional

from config.logging_config import get_logger
from monitoring.metrics import ERROR_COUNT, ORCHESTRATION_TIME
from services.image_optimizer import ImageOptimizer
from shared.errors import ChatNotFoundError, ConfigurationError, OrchestrationError, UnsupportedOperationError
from shared.models import ChatConfiguration, SyncStats
from shared.utils import int_setting
from backends.base import config_flag
from backends.streaming import StreamSink
from .context_assembler import ContextAssembler
from .message_formatter import MessageFormatter
from .mode_selector import decide_mode, is_rag_enabled_for_chat
from .rag_sync import RagSynchronizer

logger = get_logger(__name__)

# Upper bound for the memory window when max_memory_cap is not configured
MAX_MEMORY_WINDOW = 20


class ConversationOrchestrator:
    """
    Orchestrates a chat turn across stores, context assembly and a backend adapter.

    Responsibilities:
    - Backend selection through the registry, per chat
    - Session and message bookkeeping
    - RAG/multimodal mode decision, recomputed every turn
    - Background and chat-attachment synchronization into the retrieval store
    - Error wrapping with stage information

    Args:
        config_store: Key-value store with service-level settings
        chat_store: Store for chat configurations, sessions and messages
        attachment_store: Store for attachments and their RAG linkage
        blob_store: Store for the files behind attachments
        registry (BackendRegistry): Backend lookup by service id
        image_optimizer (ImageOptimizer, optional): Defaults to a Pillow-based optimizer
        page_text_extractor (optional): Source of page text for chats that include page context
    """

    def __init__(
        self,
        config_store,
        chat_store,
        attachment_store,
        blob_store,
        registry,
        image_optimizer: Optional[ImageOptimizer] = None,
        page_text_extractor=None,
    ):
        self.config_store = config_store
        self.chat_store = chat_store
        self.attachment_store = attachment_store
        self.blob_store = blob_store
        self.registry = registry
        self.image_optimizer = image_optimizer or ImageOptimizer()

        self.context_assembler = ContextAssembler(
            attachment_store, blob_store, self.image_optimizer, page_text_extractor
        )
        self.message_formatter = MessageFormatter(attachment_store, blob_store, self.image_optimizer)
        self.rag_sync = RagSynchronizer(attachment_store, blob_store, chat_store)

    def create_backend(self, chat_config: ChatConfiguration):
        """
        Build the backend adapter configured for a chat.

        Raises:
            ConfigurationError: When the service id is unknown, disabled, or lacks a token.
        """
        service_id = chat_config.ai_service
        if not config_flag(self.config_store.get(f"{service_id}_service_enabled")):
            raise ConfigurationError(f"AI service '{service_id}' is not enabled")
        backend = self.registry.create(service_id)
        if backend is None:
            raise ConfigurationError(f"Unknown AI service '{service_id}'")
        return backend

    def memory_window(self, chat_config: ChatConfiguration) -> int:
        """The chat's max_memory, capped by the service-wide max_memory_cap."""
        cap = int_setting(self.config_store.get("max_memory_cap"), MAX_MEMORY_WINDOW)
        return max(0, min(chat_config.max_memory, cap))

    def _bind_attachments(self, chat_id: str, message_id: str, attachment_ids: Iterable, turn_logger) -> None:
        for attachment_id in attachment_ids:
            attachment = self.attachment_store.get(attachment_id)
            if attachment is None or attachment.chat_id != chat_id or attachment.background_file:
                turn_logger.warning("Ignoring attachment %s: not a chat upload of this chat", attachment_id)
                continue
            self.attachment_store.bind_to_message(attachment.id, message_id)

    def handle_send_message(
        self,
        chat_id: str,
        user_id: int,
        text: str,
        attachment_ids: Optional[List[int]] = None,
        sink: Optional[StreamSink] = None,
    ) -> str:
        """
        Run one send-message turn and return the assistant's answer.

        Args:
            chat_id (str): Chat the message belongs to
            user_id (int): Sending user
            text (str): Message text
            attachment_ids (List[int], optional): Previously uploaded chat attachments to bind
            sink (StreamSink, optional): Receives SSE chunk events when the answer is streamed

        Returns:
            str: The full assistant response, also when it was streamed.

        Raises:
            OrchestrationError: Wrapping whatever failed during the turn.
        """
        extra = {'chat_id': chat_id, 'user_id': user_id, 'stage': 'load_config'}
        turn_logger = logging.LoggerAdapter(logger.logger, extra)
        ai_service = 'unknown'
        start_time = time.time()

        try:
            # 1. Chat configuration and backend
            chat_config = self.chat_store.get_chat_config(chat_id)
            if chat_config is None:
                raise ChatNotFoundError(f"Chat configuration not found for chat {chat_id}")
            ai_service = chat_config.ai_service

            extra['stage'] = 'create_backend'
            backend = self.create_backend(chat_config)

            # 2. Session, user message, attachment binding
            extra['stage'] = 'record_message'
            session = self.chat_store.get_or_create_session(user_id, chat_id)
            user_message = self.chat_store.add_message(session.session_id, 'user', text)
            if attachment_ids:
                self._bind_attachments(chat_id, user_message.message_id, attachment_ids, turn_logger)

            # 3. Per-turn backend settings
            backend.set_prompt(chat_config.system_prompt)
            backend.set_streaming(sink is not None and chat_config.enable_streaming)
            stream_sink = sink if backend.streaming else None

            # 4. Mode decision
            extra['stage'] = 'mode_selection'
            sync_stats = SyncStats()
            if is_rag_enabled_for_chat(backend, chat_config, self.config_store):
                extra['stage'] = 'background_sync'
                sync_stats = sync_stats.merge(self.rag_sync.sync_background_files(chat_config, backend))
            collection_ids = self.attachment_store.collection_ids(chat_id)
            decision = decide_mode(backend, chat_config, self.config_store, collection_ids)
            turn_logger.info(
                "Processing message with %s (rag_active=%s, streaming=%s)",
                backend.service_id, decision.rag_active, backend.streaming,
            )

            # 5. Context
            extra['stage'] = 'context_assembly'
            context_resources = self.context_assembler.build_context(chat_config, decision.rag_active)

            # 6. History
            extra['stage'] = 'format_history'
            window = self.memory_window(chat_config)
            recent = self.chat_store.recent_messages(session.session_id, window)
            history = self.message_formatter.format_history(recent, decision.rag_active)

            # 7. Chat attachment sync
            if decision.rag_active:
                extra['stage'] = 'attachment_sync'
                stats = self.rag_sync.sync_chat_attachments(session, window, backend)
                sync_stats = sync_stats.merge(stats)
                if stats.uploaded > 0:
                    collection_ids = self.attachment_store.collection_ids(chat_id)
            if sync_stats.uploaded or sync_stats.errors:
                turn_logger.info("RAG sync for this turn: %s", sync_stats.to_dict())

            # 8. Dispatch
            extra['stage'] = 'dispatch'
            response = self._dispatch(
                backend, history, collection_ids, context_resources, decision.rag_active, stream_sink, turn_logger
            )

            # 9. Assistant message
            extra['stage'] = 'record_response'
            self.chat_store.add_message(session.session_id, 'assistant', response)
            turn_logger.info("Message processed, response length %d", len(response))
            return response

        except Exception as e:
            ERROR_COUNT.labels(type='orchestration', location=extra['stage']).inc()
            turn_logger.error("Failed to send message (%s): %s", type(e).__name__, e, exc_info=True)
            raise OrchestrationError(f"Failed to send message: {e}") from e
        finally:
            ORCHESTRATION_TIME.labels(ai_service=ai_service).observe(time.time() - start_time)

    @staticmethod
    def _dispatch(backend, history, collection_ids, context_resources, rag_active, sink, turn_logger) -> str:
        if rag_active:
            turn_logger.debug("Using RAG mode with collections %s", collection_ids)
            try:
                return backend.send_rag_completion(history, list(collection_ids), context_resources, sink)
            except UnsupportedOperationError:
                turn_logger.warning("%s cannot do RAG completions, falling back to standard mode", backend.service_id)
        return backend.send_completion(history, context_resources, sink)
