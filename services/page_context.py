"""
Plain-text extraction from the XML of the page a chat is embedded in.

Pages are stored as XML documents (`<pages_dir>/<page_id>.xml`). The extractor collects the
readable parts of a page (paragraphs, lists, tables, media captions), skips chat components
embedded in the page so a chat never reads its own markup, and joins the parts with blank
lines.
"""

import logging
import os
import re
import xml.etree.ElementTree as ET
from typing import List, Optional

from shared.models import ChatConfiguration

logger = logging.getLogger(__name__)

CHAT_COMPONENT_TYPE = "AIChatPageComponent"

_WHITESPACE = re.compile(r'\s+')
_TAG = re.compile(r'<[^>]+>')


def _element_text(element: ET.Element) -> str:
    return _WHITESPACE.sub(' ', ''.join(element.itertext())).strip()


def _remove_chat_components(root: ET.Element) -> None:
    for parent in list(root.iter()):
        for child in list(parent):
            if child.tag == 'PageComponent' and child.get('ComponentType') == CHAT_COMPONENT_TYPE:
                parent.remove(child)


def extract_text_from_page_xml(xml_content: str) -> str:
    """
    Extract the readable text of a page document.

    Args:
        xml_content (str): Page XML

    Returns:
        str: Text parts joined by blank lines; empty string for empty input. Malformed XML
        falls back to the content with all tags stripped.
    """
    if not xml_content or not xml_content.strip():
        return ''
    try:
        root = ET.fromstring(xml_content)
    except ET.ParseError as e:
        logger.warning("Error parsing page XML, falling back to tag stripping: %s", e)
        return _WHITESPACE.sub(' ', _TAG.sub(' ', xml_content)).strip()

    _remove_chat_components(root)

    parts: List[str] = []
    for paragraph in root.iter('Paragraph'):
        text = _element_text(paragraph)
        if text:
            parts.append(text)
    for list_element in root.iter('List'):
        text = _element_text(list_element)
        if text:
            parts.append(text)
    for table in root.iter('Table'):
        text = _element_text(table)
        if text:
            parts.append(f"Table content: {text}")
    for media in root.iter('MediaObject'):
        for caption in media.iter('Caption'):
            text = _element_text(caption)
            if text:
                parts.append(f"Image/Media caption: {text}")
    return "\n\n".join(parts)


class XmlPageTextExtractor:
    """
    Page-text source for chats with `include_page_context` enabled.

    Args:
        pages_dir (str, optional): Directory holding `<page_id>.xml` documents; without it the
            extractor never finds a page.
    """

    def __init__(self, pages_dir: Optional[str] = None):
        self.pages_dir = pages_dir

    def load_page_xml(self, page_id) -> Optional[str]:
        if not self.pages_dir or page_id is None:
            return None
        path = os.path.join(self.pages_dir, f"{int(page_id)}.xml")
        if not os.path.exists(path):
            logger.debug("No page document at %s", path)
            return None
        with open(path, 'r', encoding='utf-8') as f:
            return f.read()

    def extract(self, chat_config: ChatConfiguration) -> str:
        """Text of the chat's page, or an empty string when the page is unknown."""
        xml_content = self.load_page_xml(chat_config.page_id)
        if not xml_content:
            return ''
        return extract_text_from_page_xml(xml_content)
