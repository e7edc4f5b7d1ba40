"""
core/attachments.py

Attachment lifecycle around the send-message turn: uploading files into a chat, deleting
them (including their copy in the retrieval store), clearing a user's conversation, loading
a chat for display, and describing the upload rules a client has to follow.

Chat uploads in a RAG-enabled chat go to the retrieval store immediately, under the user's
session as entity, so user uploads are kept apart from the chat's background files. Such an
upload is all or nothing: when the remote upload fails, the local attachment and blob are
removed again instead of leaving a file that would otherwise be sent inline.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
import uuid
from typing import Any, Dict, List, Optional

from monitoring.metrics import track_errors
from shared.errors import ChatNotFoundError, ConfigurationError, UploadError
from shared.models import Attachment, ChatConfiguration
from shared.utils import int_setting, safe_filename
from services.upload_validator import UploadValidator
from .mode_selector import is_rag_enabled_for_chat

logger = logging.getLogger(__name__)

# Used when load_chat_limit is not configured
DEFAULT_LOAD_LIMIT = 50


class AttachmentService:
    """
    Upload, delete and listing flows for chat attachments.

    Args:
        config_store: Key-value store with service-level settings
        chat_store: Store for chat configurations, sessions and messages
        attachment_store: Store for attachment records
        blob_store: Store for file content
        registry (BackendRegistry): Backend lookup by service id
        validator (UploadValidator, optional): Defaults to a validator over `config_store`
    """

    def __init__(self, config_store, chat_store, attachment_store, blob_store, registry, validator=None):
        self.config_store = config_store
        self.chat_store = chat_store
        self.attachment_store = attachment_store
        self.blob_store = blob_store
        self.registry = registry
        self.validator = validator or UploadValidator(config_store)

    def _chat_config(self, chat_id: str) -> ChatConfiguration:
        chat_config = self.chat_store.get_chat_config(chat_id)
        if chat_config is None:
            raise ChatNotFoundError(f"Chat configuration not found for chat {chat_id}")
        return chat_config

    def _backend(self, chat_config: ChatConfiguration):
        backend = self.registry.create(chat_config.ai_service)
        if backend is None:
            raise ConfigurationError(f"Unknown AI service '{chat_config.ai_service}'")
        return backend

    # --- Uploads ---

    @track_errors('upload', 'chat_upload')
    def upload_chat_file(self, chat_id: str, user_id: int, filename: str, data: bytes) -> Attachment:
        """
        Store a file the user attaches to an upcoming message.

        Returns:
            Attachment: The new, not yet bound attachment (linked to RAG when the chat is in
            RAG mode).

        Raises:
            ConfigurationError: When the chat or its backend is unknown.
            UploadError: When the file is rejected, or the RAG upload fails.
        """
        chat_config = self._chat_config(chat_id)
        if not chat_config.enable_chat_uploads:
            raise UploadError("File uploads are disabled for this chat.")
        extension = self.validator.validate(filename, data, upload_type='chat')

        backend = self._backend(chat_config)
        rag_enabled = is_rag_enabled_for_chat(backend, chat_config, self.config_store)
        if not backend.is_file_type_allowed(extension, rag_enabled):
            mode = "RAG" if rag_enabled else "Multimodal"
            raise UploadError(
                f"File type .{extension} not allowed in {mode} mode. "
                f"Allowed: {backend.allowed_file_types_description(rag_enabled)}"
            )

        info = self.blob_store.store(filename, data)
        attachment = self.attachment_store.create(chat_id, user_id, info.resource_id)
        logger.info("Chat upload %s stored as attachment %s in chat %s", filename, attachment.id, chat_id)

        if rag_enabled:
            session = self.chat_store.get_or_create_session(user_id, chat_id)
            try:
                result = self._upload_bytes(backend, filename, data, session.session_id)
            except Exception as e:
                logger.error(
                    "RAG upload failed for chat upload, removing attachment %s: %s",
                    attachment.id, e,
                    exc_info=True,
                )
                self.attachment_store.delete(attachment.id)
                self.blob_store.delete(info.resource_id)
                raise UploadError(f"RAG upload failed: {e}") from e

            attachment.link_to_rag(result.collection_id, result.remote_file_id, entity_id=session.session_id)
            self.attachment_store.save(attachment)
            self.chat_store.set_rag_collection_id(chat_id, result.collection_id)
        return attachment

    @staticmethod
    def _upload_bytes(backend, filename: str, data: bytes, entity_id: str):
        # The remote side validates the extension, so the temp file keeps the original name
        temp_dir = tempfile.mkdtemp(prefix="rag_upload_")
        temp_path = os.path.join(temp_dir, f"{uuid.uuid4().hex}_{safe_filename(filename)}")
        try:
            with open(temp_path, "wb") as f:
                f.write(data)
            return backend.upload_to_rag(temp_path, entity_id=entity_id)
        finally:
            shutil.rmtree(temp_dir, ignore_errors=True)

    @track_errors('upload', 'background_upload')
    def upload_background_file(self, chat_id: str, user_id: int, filename: str, data: bytes) -> Attachment:
        """
        Store a background file for a chat. It is mirrored into the retrieval store on the next
        turn that runs with RAG enabled.
        """
        self._chat_config(chat_id)
        self.validator.validate(filename, data, upload_type='background')
        info = self.blob_store.store(filename, data)
        attachment = self.attachment_store.create(chat_id, user_id, info.resource_id, background_file=True)
        logger.info("Background file %s stored as attachment %s in chat %s", filename, attachment.id, chat_id)
        return attachment

    # --- Deletion ---

    def delete_attachment(self, attachment_id: int) -> bool:
        """
        Delete an attachment, its blob, and its remote copy when it was uploaded to RAG.

        Remote failures are logged as warnings; the local delete always proceeds.

        Returns:
            bool: False when the attachment does not exist.
        """
        attachment = self.attachment_store.get(attachment_id)
        if attachment is None:
            return False

        if attachment.is_in_rag():
            self._delete_remote(attachment)

        self.blob_store.delete(attachment.resource_id)
        self.attachment_store.delete(attachment.id)
        logger.info("Deleted attachment %s of chat %s", attachment.id, attachment.chat_id)
        return True

    def _delete_remote(self, attachment: Attachment) -> None:
        chat_config = self.chat_store.get_chat_config(attachment.chat_id)
        service_id = chat_config.ai_service if chat_config else None
        try:
            backend = self.registry.create(service_id) if service_id else None
            if backend is None:
                logger.warning("No backend to delete RAG file of attachment %s", attachment.id)
                return
            entity_id = attachment.rag.entity_id or attachment.chat_id
            if not backend.delete_from_rag(attachment.rag.remote_file_id, entity_id):
                logger.warning(
                    "RAG deletion not confirmed for attachment %s (remote id %s)",
                    attachment.id, attachment.rag.remote_file_id,
                )
                return
            # Remote copy removed
            attachment.clear_rag_linkage()
            self.attachment_store.save(attachment)
        except Exception as e:
            logger.warning("RAG deletion failed for attachment %s: %s", attachment.id, e)

    def clear_chat(self, chat_id: str, user_id: int) -> bool:
        """
        Remove a user's conversation in a chat: attachments of its messages (with remote
        cleanup), the messages, and the session itself.

        Returns:
            bool: False when the user had no session in the chat.
        """
        session = self.chat_store.find_session(user_id, chat_id)
        if session is None:
            return False
        message_ids = [m.message_id for m in self.chat_store.list_messages(session.session_id)]
        for attachment in self.attachment_store.list_for_messages(message_ids):
            try:
                self.delete_attachment(attachment.id)
            except Exception as e:
                logger.warning("Failed to delete attachment %s during clear_chat: %s", attachment.id, e)
        self.chat_store.delete_session(session.session_id)
        logger.info("Cleared session %s of user %s in chat %s", session.session_id, user_id, chat_id)
        return True

    # --- Read side ---

    def load_chat(self, chat_id: str, user_id: int, limit: Optional[int] = None) -> Dict[str, Any]:
        """
        Chat configuration, the user's session, and recent messages with attachment summaries.

        Without an explicit limit the `load_chat_limit` setting decides how many messages are returned.
        """
        if limit is None:
            limit = int_setting(self.config_store.get('load_chat_limit'), DEFAULT_LOAD_LIMIT)
        chat_config = self._chat_config(chat_id)
        session = self.chat_store.get_or_create_session(user_id, chat_id)
        messages: List[Dict[str, Any]] = []
        for message in self.chat_store.recent_messages(session.session_id, limit):
            messages.append({
                'role': message.role,
                'message': message.content,
                'timestamp': message.created_at,
                'attachments': [
                    self.attachment_summary(a)
                    for a in self.attachment_store.list_for_message(message.message_id)
                ],
            })
        return {
            'config': chat_config.to_dict(),
            'session': session.to_dict(),
            'messages': messages,
        }

    def attachment_summary(self, attachment: Attachment) -> Dict[str, Any]:
        summary = attachment.to_dict()
        info = self.blob_store.info(attachment.resource_id)
        if info is not None:
            summary.update({'title': info.title, 'mime_type': info.mime_type, 'size': info.size})
        return summary

    def upload_config(self, chat_id: str) -> Dict[str, Any]:
        """Upload rules for a chat in its current mode."""
        chat_config = self._chat_config(chat_id)
        backend = self._backend(chat_config)
        rag_enabled = is_rag_enabled_for_chat(backend, chat_config, self.config_store)
        return {
            'upload_enabled': self.validator.is_upload_enabled('chat') and chat_config.enable_chat_uploads,
            'allowed_extensions': backend.allowed_file_types(rag_enabled),
            'rag_mode': rag_enabled,
            'max_file_size_mb': int_setting(self.config_store.get('max_upload_size_mb'), 10),
            'max_attachments_per_message': int_setting(self.config_store.get('max_attachments_per_message'), 5),
            'max_char_limit': int_setting(self.config_store.get('characters_limit'), 2000),
            'max_memory_limit': int_setting(self.config_store.get('max_memory_messages'), 10),
        }
