"""
Validation of uploaded files against the administrator's upload restrictions.

Two upload types exist: `chat` (a file sent along with a message) and `background` (a file
that becomes part of the chat's standing context). Both share the size limit and the
extension whitelist; each can be switched off on its own, and the global
`enable_file_uploads` switch turns off file handling entirely.

Besides the extension, the first bytes of the file must match the format the extension
claims, so a renamed executable cannot pass as a PNG.
"""

import logging
from typing import Iterable, List, Optional

from shared.errors import UploadError
from shared.utils import EXTENSION_TO_MIME, file_suffix

logger = logging.getLogger(__name__)

UPLOAD_TYPES = ('chat', 'background')
DEFAULT_ALLOWED_EXTENSIONS = ['txt', 'md', 'pdf', 'csv', 'png', 'jpg', 'jpeg', 'webp', 'gif']
DEFAULT_MAX_FILE_SIZE_MB = 5

_SIGNATURES = {
    'application/pdf': (b'%PDF',),
    'image/png': (b'\x89PNG\r\n\x1a\n',),
    'image/jpeg': (b'\xff\xd8\xff',),
    'image/gif': (b'GIF87a', b'GIF89a'),
}


def parse_extension_list(value) -> List[str]:
    """Accept a comma-separated string or a list and return lower-case extensions."""
    if value is None:
        return []
    items: Iterable = value.split(',') if isinstance(value, str) else value
    return [str(item).strip().lower().lstrip('.') for item in items if str(item).strip()]


def content_matches_mime(data: bytes, mime_type: str) -> bool:
    """Check that the leading bytes of `data` agree with `mime_type`."""
    if mime_type == 'image/webp':
        return data[:4] == b'RIFF' and data[8:12] == b'WEBP'
    signatures = _SIGNATURES.get(mime_type)
    if signatures is not None:
        return any(data.startswith(signature) for signature in signatures)
    if mime_type.startswith('text/'):
        try:
            data.decode('utf-8')
        except UnicodeDecodeError:
            return False
        return b'\x00' not in data
    return True


class UploadValidator:
    """
    Upload checks driven by the configuration store.

    Args:
        config_store: Store providing `enable_file_uploads`, `allow_chat_uploads`,
            `allow_background_files`, `allowed_file_types` and `max_upload_size_mb`
    """

    def __init__(self, config_store):
        self.config_store = config_store

    @staticmethod
    def _flag(value, default: bool) -> bool:
        if value is None:
            return default
        return value in (True, 1, '1', 'true', 'True')

    def is_upload_enabled(self, upload_type: str) -> bool:
        if not self._flag(self.config_store.get('enable_file_uploads'), False):
            return False
        if upload_type == 'background':
            return self._flag(self.config_store.get('allow_background_files'), True)
        if upload_type == 'chat':
            return self._flag(self.config_store.get('allow_chat_uploads'), True)
        return False

    def allowed_extensions(self, upload_type: str) -> List[str]:
        if not self.is_upload_enabled(upload_type):
            return []
        configured = parse_extension_list(self.config_store.get('allowed_file_types'))
        return configured or list(DEFAULT_ALLOWED_EXTENSIONS)

    def max_file_size_mb(self) -> float:
        value = self.config_store.get('max_upload_size_mb')
        try:
            return float(value) if value is not None else DEFAULT_MAX_FILE_SIZE_MB
        except (TypeError, ValueError):
            logger.warning("Invalid max_upload_size_mb %r, using default", value)
            return DEFAULT_MAX_FILE_SIZE_MB

    def validate(self, filename: str, data: bytes, upload_type: str = 'chat') -> str:
        """
        Validate one upload.

        Args:
            filename (str): Original filename
            data (bytes): File content
            upload_type (str): 'chat' or 'background'

        Returns:
            str: The lower-case file extension.

        Raises:
            UploadError: With a user-facing message when any check fails.
        """
        if upload_type not in UPLOAD_TYPES:
            raise ValueError(f"Unknown upload type: {upload_type}")
        if not self._flag(self.config_store.get('enable_file_uploads'), False):
            raise UploadError("File handling is disabled by administrator. Files cannot be processed by AI.")
        if not self.is_upload_enabled(upload_type):
            label = "Background file" if upload_type == 'background' else "Chat file"
            raise UploadError(f"{label} uploads are disabled by administrator.")

        max_mb = self.max_file_size_mb()
        if len(data) > max_mb * 1024 * 1024:
            raise UploadError(f"File too large. Maximum size is {max_mb:g}MB.")

        extension = file_suffix(filename)
        allowed = self.allowed_extensions(upload_type)
        if extension not in allowed:
            raise UploadError(f"File type '{extension}' not allowed. Allowed types: {', '.join(allowed)}")

        expected_mime: Optional[str] = EXTENSION_TO_MIME.get(extension)
        if expected_mime and not content_matches_mime(data, expected_mime):
            raise UploadError(f"File content does not match extension '{extension}'.")
        return extension
