"""
core/context_assembler.py

Builds the ephemeral context resources injected ahead of the conversation history.

Background files of a chat and the text of the page hosting the chat are turned into a list of
ContextResource objects for the current turn only; nothing is stored. Text files are inlined,
images become optimized data URLs, and PDFs are rendered page by page into images, except in
RAG mode, where PDFs are already indexed remotely and are left out entirely.

Assembly is best effort: a file that cannot be resolved or rendered is logged and skipped,
it never aborts the turn.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from shared.models import Attachment, ChatConfiguration, ContextResource, ResourceKind
from shared.utils import is_image_suffix, is_pdf_suffix, is_text_suffix, to_data_url

logger = logging.getLogger(__name__)

MAX_PDF_PAGES = 20
PAGE_CONTEXT_ID = "page-context"
PAGE_CONTEXT_TITLE = "Page Context"


class ContextAssembler:
    """
    Assemble context resources for a chat turn.

    Args:
        attachment_store: Store answering "background files of chat X"
        blob_store: Blob store resolving resource ids to bytes, metadata and rendered PDF pages
        image_optimizer: Object with `optimize(data, mime_type) -> (bytes, mime_type)`
        page_text_extractor (optional): Object with `extract(chat_config) -> str`
    """

    def __init__(self, attachment_store, blob_store, image_optimizer, page_text_extractor=None):
        self.attachment_store = attachment_store
        self.blob_store = blob_store
        self.image_optimizer = image_optimizer
        self.page_text_extractor = page_text_extractor

    def process_background_files(self, chat_config: ChatConfiguration, rag_active: bool) -> List[ContextResource]:
        """
        Turn the chat's background files into context resources.

        Args:
            chat_config (ChatConfiguration): The chat whose background files are processed
            rag_active (bool): Whether this turn runs in RAG mode; PDFs are skipped when True

        Returns:
            List[ContextResource]: Resources in attachment order, PDF pages in page order.
        """
        background_files = self.attachment_store.list_background_files(chat_config.chat_id)
        if not background_files:
            logger.debug("No background files for chat %s", chat_config.chat_id)
            return []

        logger.debug(
            "Processing %d background file(s) for chat %s (rag_active=%s)",
            len(background_files), chat_config.chat_id, rag_active,
        )
        resources: List[ContextResource] = []
        for attachment in background_files:
            try:
                resources.extend(self._resources_for(attachment, rag_active))
            except Exception as e:
                logger.warning(
                    "Background file processing failed for attachment %s: %s",
                    attachment.id, e,
                    exc_info=True,
                )
        return resources

    def _resources_for(self, attachment: Attachment, rag_active: bool) -> List[ContextResource]:
        info = self.blob_store.info(attachment.resource_id)
        if info is None:
            logger.debug("Blob %s of attachment %s not found", attachment.resource_id, attachment.id)
            return []

        if is_text_suffix(info.suffix):
            data = self.blob_store.read_bytes(attachment.resource_id) or b""
            content = data.decode("utf-8", errors="replace")
            if not content.strip():
                return []
            return [ContextResource(
                id=f"bg-text-{attachment.id}",
                kind=ResourceKind.TEXT_FILE,
                title=info.title,
                mime_type=info.mime_type,
                content=content,
            )]

        if is_image_suffix(info.suffix):
            data = self.blob_store.read_bytes(attachment.resource_id)
            if not data:
                return []
            optimized, mime_type = self.image_optimizer.optimize(data, info.mime_type)
            return [ContextResource(
                id=f"bg-img-{attachment.id}",
                kind=ResourceKind.IMAGE_FILE,
                title=info.title,
                mime_type=mime_type,
                url=to_data_url(optimized, mime_type),
            )]

        if is_pdf_suffix(info.suffix):
            if rag_active:
                logger.debug("Skipping PDF %s, RAG mode active", info.title)
                return []
            resources = []
            pages = self.blob_store.render_pdf_pages(attachment.resource_id, max_pages=MAX_PDF_PAGES)
            for number, page in enumerate(pages[:MAX_PDF_PAGES], start=1):
                optimized, mime_type = self.image_optimizer.optimize(page, "image/png")
                resources.append(ContextResource(
                    id=f"bg-pdf-{attachment.id}-p{number}",
                    kind=ResourceKind.PDF_PAGE,
                    title=f"{info.title} (Page {number})",
                    mime_type=mime_type,
                    url=to_data_url(optimized, mime_type),
                    page_number=number,
                    source_file=info.title,
                ))
            return resources

        logger.debug("Ignoring background file %s with unsupported suffix '%s'", info.title, info.suffix)
        return []

    def page_context_resource(self, chat_config: ChatConfiguration) -> Optional[ContextResource]:
        """The page-context resource, or None when disabled, unavailable or empty."""
        if not chat_config.include_page_context or self.page_text_extractor is None:
            return None
        try:
            text = self.page_text_extractor.extract(chat_config)
        except Exception as e:
            logger.warning("Page context extraction failed for chat %s: %s", chat_config.chat_id, e)
            return None
        if not text or not text.strip():
            return None
        return ContextResource(
            id=PAGE_CONTEXT_ID,
            kind=ResourceKind.PAGE_CONTEXT,
            title=PAGE_CONTEXT_TITLE,
            mime_type="text/plain",
            content=text,
        )

    def build_context(self, chat_config: ChatConfiguration, rag_active: bool) -> List[ContextResource]:
        """Background resources followed by the page-context resource, if any."""
        resources = self.process_background_files(chat_config, rag_active)
        page_context = self.page_context_resource(chat_config)
        if page_context is not None:
            resources.append(page_context)
        return resources
