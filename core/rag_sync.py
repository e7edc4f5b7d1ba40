"""
core/rag_sync.py

Mirrors local attachments into the backend's retrieval store.

Two batches exist: the chat's background files, and the attachments bound to the messages in
the current memory window. Each attachment is uploaded at most once; the guard is the absence
of a RAG linkage when the item is looked at. Two overlapping turns may both see an attachment
as unlinked and upload it twice; there is no lock around check and upload, and the second
linkage simply overwrites the first.

Per-item failures are counted and logged, the batch always runs to the end, and the
statistics returned are informational.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
import uuid
from typing import Iterable

from monitoring.metrics import record_sync_stats
from shared.models import Attachment, ChatConfiguration, ChatSession, SyncStats, utc_now_iso
from shared.utils import is_rag_compatible, safe_filename

logger = logging.getLogger(__name__)


class RagSynchronizer:
    """
    Upload unsynchronized attachments through a backend and record the linkage.

    Args:
        attachment_store: Store providing background files, per-message attachments and `save`
        blob_store: Blob store resolving resource ids to metadata and bytes
        chat_store: Store recording the chat's first collection id
    """

    def __init__(self, attachment_store, blob_store, chat_store):
        self.attachment_store = attachment_store
        self.blob_store = blob_store
        self.chat_store = chat_store

    def sync_background_files(self, chat_config: ChatConfiguration, backend) -> SyncStats:
        attachments = self.attachment_store.list_background_files(chat_config.chat_id)
        stats = self._sync(attachments, chat_config.chat_id, backend)
        if stats.uploaded or stats.errors:
            logger.info("Background file RAG sync for chat %s: %s", chat_config.chat_id, stats.to_dict())
        record_sync_stats("background", stats)
        return stats

    def sync_chat_attachments(self, session: ChatSession, window_size: int, backend) -> SyncStats:
        """Sync the attachments of the last `window_size` messages of the session."""
        messages = self.chat_store.recent_messages(session.session_id, window_size)
        if not messages:
            return SyncStats()
        attachments = self.attachment_store.list_for_messages([m.message_id for m in messages])
        if not any(not a.is_in_rag() for a in attachments):
            logger.debug("No chat attachments need RAG sync in session %s", session.session_id)
            return SyncStats(skipped=len(attachments))

        stats = self._sync(attachments, session.chat_id, backend)
        logger.info("Chat attachment RAG sync for session %s: %s", session.session_id, stats.to_dict())
        record_sync_stats("chat", stats)
        return stats

    def _sync(self, attachments: Iterable[Attachment], chat_id: str, backend) -> SyncStats:
        stats = SyncStats()
        for attachment in attachments:
            try:
                if self._sync_one(attachment, chat_id, backend):
                    stats.uploaded += 1
                else:
                    stats.skipped += 1
            except Exception as e:
                stats.errors += 1
                logger.warning("RAG sync failed for attachment %s: %s", attachment.id, e)
        return stats

    def _sync_one(self, attachment: Attachment, chat_id: str, backend) -> bool:
        """Upload one attachment; returns False when it was skipped."""
        if attachment.is_in_rag():
            return False
        info = self.blob_store.info(attachment.resource_id)
        if info is None:
            logger.debug("Blob %s of attachment %s not found", attachment.resource_id, attachment.id)
            return False
        if not is_rag_compatible(info.suffix):
            logger.debug("Skipping non-RAG file type '%s' for attachment %s", info.suffix, attachment.id)
            return False
        data = self.blob_store.read_bytes(attachment.resource_id)
        if data is None:
            return False

        # The remote side validates the extension, so the temp file keeps the original name
        temp_dir = tempfile.mkdtemp(prefix="rag_sync_")
        temp_path = os.path.join(temp_dir, f"rag_sync_{uuid.uuid4().hex}_{safe_filename(info.filename)}")
        try:
            with open(temp_path, "wb") as f:
                f.write(data)
            result = backend.upload_to_rag(temp_path, entity_id=chat_id)
        finally:
            shutil.rmtree(temp_dir, ignore_errors=True)

        attachment.link_to_rag(
            result.collection_id,
            result.remote_file_id,
            uploaded_at=utc_now_iso(),
            entity_id=chat_id,
        )
        self.attachment_store.save(attachment)
        if self.chat_store.set_rag_collection_id(chat_id, result.collection_id):
            logger.info("Chat %s bound to RAG collection %s", chat_id, result.collection_id)
        logger.debug("Attachment %s synced to RAG as %s", attachment.id, result.remote_file_id)
        return True
