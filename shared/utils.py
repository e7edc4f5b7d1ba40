"""
shared/utils.py

Shared utility functions used across multiple modules.

File classification is done by suffix everywhere in the service (the blob store records the
lower-case suffix of the original filename), so the suffix groups below are the single place
that decides what counts as text, image or PDF.
"""

import base64
import re
import uuid


TEXT_SUFFIXES = frozenset({'txt', 'md', 'csv'})
IMAGE_SUFFIXES = frozenset({'jpg', 'jpeg', 'png', 'gif', 'webp'})
PDF_SUFFIXES = frozenset({'pdf'})
RAG_COMPATIBLE_SUFFIXES = frozenset({'txt', 'md', 'csv', 'pdf'})

EXTENSION_TO_MIME = {
    'pdf': 'application/pdf',
    'txt': 'text/plain',
    'md': 'text/markdown',
    'csv': 'text/csv',
    'jpg': 'image/jpeg',
    'jpeg': 'image/jpeg',
    'png': 'image/png',
    'gif': 'image/gif',
    'webp': 'image/webp',
}


def file_suffix(filename: str) -> str:
    """Lower-case suffix without the dot; empty string when the name has none."""
    if not filename or '.' not in filename:
        return ''
    return filename.rsplit('.', 1)[1].strip().lower()


def mime_for_suffix(suffix: str) -> str:
    return EXTENSION_TO_MIME.get(suffix.lower(), 'application/octet-stream')


def is_text_suffix(suffix: str) -> bool:
    return suffix.lower() in TEXT_SUFFIXES


def is_image_suffix(suffix: str) -> bool:
    return suffix.lower() in IMAGE_SUFFIXES


def is_pdf_suffix(suffix: str) -> bool:
    return suffix.lower() in PDF_SUFFIXES


def is_rag_compatible(suffix: str) -> bool:
    return suffix.lower() in RAG_COMPATIBLE_SUFFIXES


def to_data_url(data: bytes, mime_type: str) -> str:
    """
    Encode raw bytes as a base64 data URL.

    Args:
        data (bytes): File content
        mime_type (str): MIME type placed in the URL header

    Returns:
        str: "data:<mime>;base64,<payload>"
    """
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


def safe_filename(filename: str) -> str:
    """Replace every character outside [A-Za-z0-9_.-] with an underscore."""
    return re.sub(r'[^a-zA-Z0-9_.-]', '_', filename or 'file')


def generate_id() -> str:
    """Random UUID4 string used for sessions, messages and stored blobs."""
    return str(uuid.uuid4())


def int_setting(value, default: int) -> int:
    """Read an admin setting stored as int or numeric string; blank or invalid values give default."""
    try:
        return int(value) if value not in (None, '') else default
    except (TypeError, ValueError):
        return default
