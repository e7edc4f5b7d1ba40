"""
In-process stores for chats, sessions, messages and attachments.

The conversation layer treats persistence as an external collaborator with a narrow
interface: create-or-get a session, append a message, list the most recent N messages, and
load, bind, link and delete attachments. These implementations keep everything in memory
behind a lock and hand out copies, so callers have to `save` what they change, the same
contract a database-backed store would impose.
"""

from __future__ import annotations

import dataclasses
import itertools
import logging
import threading
from typing import Dict, Iterable, List, Optional

from shared.models import (
    Attachment,
    ChatConfiguration,
    ChatSession,
    ConversationMessage,
)
from shared.utils import generate_id

logger = logging.getLogger(__name__)


class ChatStore:
    """Chat configurations, one session per (user, chat), and the session's messages."""

    def __init__(self):
        self._lock = threading.RLock()
        self._configs: Dict[str, ChatConfiguration] = {}
        self._sessions: Dict[str, ChatSession] = {}
        self._messages: Dict[str, List[ConversationMessage]] = {}

    # --- Chat configuration ---

    def save_chat_config(self, config: ChatConfiguration) -> None:
        with self._lock:
            self._configs[config.chat_id] = dataclasses.replace(config)

    def get_chat_config(self, chat_id: str) -> Optional[ChatConfiguration]:
        with self._lock:
            config = self._configs.get(chat_id)
            return dataclasses.replace(config) if config else None

    def set_rag_collection_id(self, chat_id: str, collection_id: str) -> bool:
        """Record the chat's collection id once; later calls leave an existing value untouched."""
        with self._lock:
            config = self._configs.get(chat_id)
            if config is None or config.rag_collection_id:
                return False
            config.rag_collection_id = collection_id
            return True

    # --- Sessions ---

    def find_session(self, user_id: int, chat_id: str) -> Optional[ChatSession]:
        with self._lock:
            for session in self._sessions.values():
                if session.user_id == user_id and session.chat_id == chat_id:
                    return dataclasses.replace(session)
            return None

    def get_or_create_session(self, user_id: int, chat_id: str) -> ChatSession:
        with self._lock:
            existing = self.find_session(user_id, chat_id)
            if existing is not None:
                return existing
            session = ChatSession(session_id=generate_id(), user_id=user_id, chat_id=chat_id)
            self._sessions[session.session_id] = session
            self._messages[session.session_id] = []
            logger.info("Created session %s for user %s in chat %s", session.session_id, user_id, chat_id)
            return dataclasses.replace(session)

    def delete_session(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)
            self._messages.pop(session_id, None)

    # --- Messages ---

    def add_message(self, session_id: str, role: str, content: str) -> ConversationMessage:
        with self._lock:
            if session_id not in self._sessions:
                raise KeyError(f"Unknown session: {session_id}")
            message = ConversationMessage(
                message_id=generate_id(),
                session_id=session_id,
                role=role,
                content=content,
            )
            self._messages[session_id].append(message)
            self._sessions[session_id].last_update = message.created_at
            return dataclasses.replace(message)

    def list_messages(self, session_id: str) -> List[ConversationMessage]:
        with self._lock:
            return [dataclasses.replace(m) for m in self._messages.get(session_id, [])]

    def recent_messages(self, session_id: str, limit: int) -> List[ConversationMessage]:
        """The last `limit` messages of the session, oldest first."""
        if limit <= 0:
            return []
        return self.list_messages(session_id)[-limit:]


class AttachmentStore:
    """Attachment records with auto-incremented integer ids."""

    def __init__(self):
        self._lock = threading.RLock()
        self._attachments: Dict[int, Attachment] = {}
        self._ids = itertools.count(1)

    def create(
        self,
        chat_id: str,
        user_id: int,
        resource_id: str,
        background_file: bool = False,
        message_id: Optional[str] = None,
    ) -> Attachment:
        with self._lock:
            attachment = Attachment(
                id=next(self._ids),
                chat_id=chat_id,
                user_id=user_id,
                resource_id=resource_id,
                message_id=message_id,
                background_file=background_file,
            )
            self._attachments[attachment.id] = attachment
            return dataclasses.replace(attachment)

    def get(self, attachment_id: int) -> Optional[Attachment]:
        with self._lock:
            attachment = self._attachments.get(int(attachment_id))
            return dataclasses.replace(attachment) if attachment else None

    def save(self, attachment: Attachment) -> None:
        with self._lock:
            if attachment.id not in self._attachments:
                raise KeyError(f"Unknown attachment: {attachment.id}")
            self._attachments[attachment.id] = dataclasses.replace(attachment)

    def bind_to_message(self, attachment_id: int, message_id: str) -> Optional[Attachment]:
        with self._lock:
            attachment = self._attachments.get(int(attachment_id))
            if attachment is None:
                return None
            attachment.message_id = message_id
            return dataclasses.replace(attachment)

    def delete(self, attachment_id: int) -> bool:
        with self._lock:
            return self._attachments.pop(int(attachment_id), None) is not None

    def _select(self, predicate) -> List[Attachment]:
        with self._lock:
            return [
                dataclasses.replace(a)
                for a in sorted(self._attachments.values(), key=lambda a: a.id)
                if predicate(a)
            ]

    def list_for_message(self, message_id: str) -> List[Attachment]:
        return self._select(lambda a: a.message_id == message_id)

    def list_for_messages(self, message_ids: Iterable[str]) -> List[Attachment]:
        wanted = set(message_ids)
        return self._select(lambda a: a.message_id in wanted and not a.background_file)

    def list_background_files(self, chat_id: str) -> List[Attachment]:
        return self._select(lambda a: a.chat_id == chat_id and a.background_file)

    def list_for_chat(self, chat_id: str) -> List[Attachment]:
        return self._select(lambda a: a.chat_id == chat_id)

    def collection_ids(self, chat_id: str) -> List[str]:
        """Distinct RAG collection ids over all of the chat's attachments, in first-seen order."""
        ids: List[str] = []
        for attachment in self.list_for_chat(chat_id):
            if attachment.rag and attachment.rag.collection_id and attachment.rag.collection_id not in ids:
                ids.append(attachment.rag.collection_id)
        return ids
