"""
core/message_formatter.py

Converts stored conversation messages into the outbound wire format.

In RAG mode every message is sent as plain text, since attached files are retrieved from the
remote collection. Otherwise, attachments that are not already in a collection are embedded
inline: images as one data-URL part each, PDFs as one part per rendered page. Text files
attached to a message contribute no part of their own.
"""

from __future__ import annotations

import logging
from typing import List, Sequence, Union

from shared.models import (
    Attachment,
    ConversationMessage,
    ImageUrlPart,
    OutboundMessage,
    TextPart,
)
from shared.utils import is_image_suffix, is_pdf_suffix, to_data_url

logger = logging.getLogger(__name__)

MAX_PDF_PAGES = 20


class MessageFormatter:
    """
    Format conversation history for a backend request.

    Args:
        attachment_store: Store listing the attachments bound to a message
        blob_store: Blob store resolving resource ids to bytes and rendered PDF pages
        image_optimizer: Object with `optimize(data, mime_type) -> (bytes, mime_type)`
    """

    def __init__(self, attachment_store, blob_store, image_optimizer):
        self.attachment_store = attachment_store
        self.blob_store = blob_store
        self.image_optimizer = image_optimizer

    def format_history(self, messages: Sequence[ConversationMessage], rag_active: bool) -> List[OutboundMessage]:
        """
        Args:
            messages (Sequence[ConversationMessage]): Messages in chronological order
            rag_active (bool): Whether this turn runs in RAG mode

        Returns:
            List[OutboundMessage]: One outbound message per stored message, same order.
        """
        if rag_active:
            return [OutboundMessage(role=m.role, content=m.content) for m in messages]
        return [self._format_message(m) for m in messages]

    def _format_message(self, message: ConversationMessage) -> OutboundMessage:
        inline = [a for a in self.attachment_store.list_for_message(message.message_id) if not a.is_in_rag()]
        if not inline:
            return OutboundMessage(role=message.role, content=message.content)

        parts: List[Union[TextPart, ImageUrlPart]] = []
        if message.content and message.content.strip():
            parts.append(TextPart(text=message.content))
        for attachment in inline:
            try:
                parts.extend(self._attachment_parts(attachment))
            except Exception as e:
                logger.warning("Attachment processing failed for attachment %s: %s", attachment.id, e)

        if not parts:
            return OutboundMessage(role=message.role, content=message.content)
        return OutboundMessage(role=message.role, content=parts)

    def _attachment_parts(self, attachment: Attachment) -> List[ImageUrlPart]:
        info = self.blob_store.info(attachment.resource_id)
        if info is None:
            return []
        if is_image_suffix(info.suffix):
            data = self.blob_store.read_bytes(attachment.resource_id)
            if not data:
                return []
            optimized, mime_type = self.image_optimizer.optimize(data, info.mime_type)
            return [ImageUrlPart.from_url(to_data_url(optimized, mime_type))]
        if is_pdf_suffix(info.suffix):
            parts = []
            for page in self.blob_store.render_pdf_pages(attachment.resource_id, max_pages=MAX_PDF_PAGES)[:MAX_PDF_PAGES]:
                optimized, mime_type = self.image_optimizer.optimize(page, "image/png")
                parts.append(ImageUrlPart.from_url(to_data_url(optimized, mime_type)))
            return parts
        return []
