"""
Filesystem blob store for uploaded files.

Every stored file gets a resource id (UUID4) and lives in its own directory under the blob
root, next to a small `meta.json` describing the original filename, title, suffix, MIME type
and size:

    <blob_root>/<resource_id>/meta.json
    <blob_root>/<resource_id>/<safe filename>

PDF pages are rendered on demand with pdf2image (poppler must be installed on the host);
rendering is not cached, since the image optimizer works on the rendered PNG bytes directly.
"""

import io
import json
import logging
import os
import shutil
from typing import List, Optional

from pdf2image import convert_from_bytes

from shared.models import BlobInfo
from shared.utils import file_suffix, generate_id, mime_for_suffix, safe_filename

logger = logging.getLogger(__name__)

META_FILENAME = "meta.json"
MAX_PDF_PAGES = 20
PDF_RENDER_DPI = 150


class LocalBlobStore:
    """
    Blob store backed by a local directory.

    Args:
        root_dir (str): Directory that holds one sub-directory per stored resource
    """

    def __init__(self, root_dir: str):
        self.root_dir = root_dir
        os.makedirs(self.root_dir, exist_ok=True)

    def _resource_dir(self, resource_id: str) -> str:
        # Resource ids are generated here; anything with a path separator is not ours
        if not resource_id or os.sep in resource_id or resource_id in ('.', '..'):
            raise ValueError(f"Invalid resource id: {resource_id!r}")
        return os.path.join(self.root_dir, resource_id)

    def store(self, filename: str, data: bytes, title: Optional[str] = None) -> BlobInfo:
        """
        Write a new blob and its metadata.

        Args:
            filename (str): Original filename as uploaded
            data (bytes): File content
            title (str, optional): Display title; defaults to the filename

        Returns:
            BlobInfo: Metadata of the stored blob.
        """
        resource_id = generate_id()
        suffix = file_suffix(filename)
        info = BlobInfo(
            resource_id=resource_id,
            filename=filename,
            title=title or filename,
            suffix=suffix,
            mime_type=mime_for_suffix(suffix),
            size=len(data),
        )
        directory = self._resource_dir(resource_id)
        os.makedirs(directory, exist_ok=True)
        with open(os.path.join(directory, safe_filename(filename)), 'wb') as f:
            f.write(data)
        with open(os.path.join(directory, META_FILENAME), 'w', encoding='utf-8') as f:
            json.dump(info.__dict__, f, indent=4)
        logger.info("Stored blob %s (%s, %d bytes)", resource_id, filename, len(data))
        return info

    def info(self, resource_id: str) -> Optional[BlobInfo]:
        """Metadata of a blob, or None when it does not exist."""
        meta_path = os.path.join(self._resource_dir(resource_id), META_FILENAME)
        if not os.path.exists(meta_path):
            return None
        with open(meta_path, 'r', encoding='utf-8') as f:
            return BlobInfo(**json.load(f))

    def read_bytes(self, resource_id: str) -> Optional[bytes]:
        info = self.info(resource_id)
        if info is None:
            return None
        path = os.path.join(self._resource_dir(resource_id), safe_filename(info.filename))
        if not os.path.exists(path):
            logger.warning("Blob %s has metadata but no content file", resource_id)
            return None
        with open(path, 'rb') as f:
            return f.read()

    def delete(self, resource_id: str) -> bool:
        directory = self._resource_dir(resource_id)
        if not os.path.isdir(directory):
            return False
        shutil.rmtree(directory)
        logger.info("Deleted blob %s", resource_id)
        return True

    def render_pdf_pages(self, resource_id: str, max_pages: int = MAX_PDF_PAGES) -> List[bytes]:
        """
        Render the first `max_pages` pages of a stored PDF as PNG images.

        Returns:
            List[bytes]: PNG bytes per page, in page order; empty when the blob is missing.
        """
        data = self.read_bytes(resource_id)
        if data is None:
            return []
        pages = convert_from_bytes(data, dpi=PDF_RENDER_DPI, first_page=1, last_page=max_pages)
        rendered = []
        for page in pages[:max_pages]:
            buffer = io.BytesIO()
            page.save(buffer, format='PNG')
            rendered.append(buffer.getvalue())
        logger.debug("Rendered %d page(s) of PDF %s", len(rendered), resource_id)
        return rendered
