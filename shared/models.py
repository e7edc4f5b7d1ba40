"""
shared/models.py

Common data models and type definitions used across the conversation layer.

The dataclasses describe state owned by the external stores (chat configuration, sessions,
messages, attachments) as well as the ephemeral values that only live for one turn (context
resources, mode decisions, sync statistics). The outbound wire model is a small set of
Pydantic models, because that is the one structure that leaves the process and has to keep
a stable JSON shape for every backend.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Any, List, Optional, Union, Literal
from enum import Enum
from pydantic import BaseModel, Field


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string, used for all stored timestamps."""
    return datetime.now(timezone.utc).isoformat()


class ResourceKind(Enum):
    """
    Kinds of ephemeral context resources assembled for a turn.

    - TEXT_FILE: background text file sent inline (txt, md, csv)
    - IMAGE_FILE: background image sent as a data URL
    - PDF_PAGE: one rendered page of a background PDF
    - PAGE_CONTEXT: plain text extracted from the page hosting the chat
    """
    TEXT_FILE = "text_file"
    IMAGE_FILE = "image_file"
    PDF_PAGE = "pdf_page"
    PAGE_CONTEXT = "page_context"

    @property
    def is_text(self) -> bool:
        return self in (ResourceKind.TEXT_FILE, ResourceKind.PAGE_CONTEXT)


@dataclass
class ChatConfiguration:
    """
    Per-chat settings as stored by the configuration collaborator.

    The core reads this object and never mutates it, with one exception: `rag_collection_id`
    is filled in once, on the first successful upload to the retrieval backend.
    """
    chat_id: str
    ai_service: str = "ramses"
    system_prompt: str = ""
    max_memory: int = 10
    char_limit: int = 2000
    enable_rag: bool = False
    include_page_context: bool = False
    enable_streaming: bool = True
    enable_chat_uploads: bool = True
    title: str = ""
    page_id: Optional[int] = None
    parent_id: Optional[int] = None
    parent_type: str = ""
    disclaimer: str = ""
    rag_collection_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'chat_id': self.chat_id,
            'ai_service': self.ai_service,
            'system_prompt': self.system_prompt,
            'max_memory': self.max_memory,
            'char_limit': self.char_limit,
            'enable_rag': self.enable_rag,
            'include_page_context': self.include_page_context,
            'enable_streaming': self.enable_streaming,
            'enable_chat_uploads': self.enable_chat_uploads,
            'title': self.title,
            'disclaimer': self.disclaimer,
            'rag_collection_id': self.rag_collection_id,
        }


@dataclass
class ChatSession:
    """One user's conversation within one chat."""
    session_id: str
    user_id: int
    chat_id: str
    created_at: str = field(default_factory=utc_now_iso)
    last_update: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'session_id': self.session_id,
            'user_id': self.user_id,
            'chat_id': self.chat_id,
            'created_at': self.created_at,
            'last_update': self.last_update,
        }


@dataclass
class ConversationMessage:
    message_id: str
    session_id: str
    role: str  # "user" or "assistant"
    content: str
    created_at: str = field(default_factory=utc_now_iso)


@dataclass(frozen=True)
class RagLinkage:
    """
    Remote linkage of an attachment to a retrieval collection.

    Kept as a single immutable value on the attachment so the fields can only be present
    together: an attachment is either fully linked or not linked at all.
    """
    collection_id: str
    remote_file_id: str
    uploaded_at: str
    entity_id: str = ""


@dataclass
class Attachment:
    """
    A stored file reference owned by a chat.

    Background files (`background_file=True`) are never bound to a message; chat uploads start
    unbound and get bound to the user message they were sent with.
    """
    id: int
    chat_id: str
    user_id: int
    resource_id: str
    message_id: Optional[str] = None
    background_file: bool = False
    rag: Optional[RagLinkage] = None
    created_at: str = field(default_factory=utc_now_iso)

    def is_in_rag(self) -> bool:
        return self.rag is not None

    def link_to_rag(
        self,
        collection_id: str,
        remote_file_id: str,
        uploaded_at: Optional[str] = None,
        entity_id: str = "",
    ) -> None:
        """
        Set the remote linkage in one step.

        Raises:
            ValueError: If either remote identifier is empty; a half-populated linkage is never stored.
        """
        if not collection_id or not remote_file_id:
            raise ValueError("RAG linkage requires both collection_id and remote_file_id")
        self.rag = RagLinkage(
            collection_id=str(collection_id),
            remote_file_id=str(remote_file_id),
            uploaded_at=uploaded_at or utc_now_iso(),
            entity_id=str(entity_id),
        )

    def clear_rag_linkage(self) -> None:
        self.rag = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'chat_id': self.chat_id,
            'user_id': self.user_id,
            'resource_id': self.resource_id,
            'message_id': self.message_id,
            'background_file': self.background_file,
            'rag_collection_id': self.rag.collection_id if self.rag else None,
            'rag_remote_file_id': self.rag.remote_file_id if self.rag else None,
            'rag_uploaded_at': self.rag.uploaded_at if self.rag else None,
            'created_at': self.created_at,
        }


@dataclass
class BlobInfo:
    """Metadata the blob store keeps for a stored file."""
    resource_id: str
    filename: str
    title: str
    suffix: str
    mime_type: str
    size: int


@dataclass
class ContextResource:
    """
    Ephemeral unit of background information assembled fresh for each turn.

    Text kinds carry `content`; image kinds carry a data URL in `url`. PDF pages additionally
    carry the page number and the title of the source file.
    """
    id: str
    kind: ResourceKind
    title: str
    mime_type: str
    content: Optional[str] = None
    url: Optional[str] = None
    page_number: Optional[int] = None
    source_file: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'id': self.id,
            'kind': self.kind.value,
            'title': self.title,
            'mime_type': self.mime_type,
        }
        for key in ('content', 'url', 'page_number', 'source_file'):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        return data


@dataclass(frozen=True)
class ModeDecision:
    """
    Outcome of the per-turn mode selection.

    `rag_enabled` is the three-way gate (backend capability, admin toggle, chat toggle);
    RAG mode is only active when, in addition, the chat has at least one collection.
    """
    rag_enabled: bool
    collection_ids: tuple = ()

    @property
    def rag_active(self) -> bool:
        return self.rag_enabled and len(self.collection_ids) > 0


@dataclass
class SyncStats:
    """Counters returned by RAG synchronization; informational, never persisted."""
    uploaded: int = 0
    skipped: int = 0
    errors: int = 0

    def merge(self, other: "SyncStats") -> "SyncStats":
        return SyncStats(
            uploaded=self.uploaded + other.uploaded,
            skipped=self.skipped + other.skipped,
            errors=self.errors + other.errors,
        )

    def to_dict(self) -> Dict[str, int]:
        return {'uploaded': self.uploaded, 'skipped': self.skipped, 'errors': self.errors}


@dataclass
class RagUploadResult:
    collection_id: str
    remote_file_id: str


@dataclass(frozen=True)
class BackendCapabilities:
    streaming: bool
    rag: bool
    multimodal: bool
    file_types: tuple = ()
    rag_file_types: tuple = ()
    max_tokens: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'streaming': self.streaming,
            'rag': self.rag,
            'multimodal': self.multimodal,
            'file_types': list(self.file_types),
            'rag_file_types': list(self.rag_file_types),
            'max_tokens': self.max_tokens,
        }


# --- Outbound wire model ---

class ImageUrl(BaseModel):
    url: str
    detail: Optional[str] = None


class TextPart(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ImageUrlPart(BaseModel):
    type: Literal["image_url"] = "image_url"
    image_url: ImageUrl

    @classmethod
    def from_url(cls, url: str, detail: Optional[str] = None) -> "ImageUrlPart":
        return cls(image_url=ImageUrl(url=url, detail=detail))


ContentPart = Union[TextPart, ImageUrlPart]


class OutboundMessage(BaseModel):
    """
    One chat message in the backend wire format.

    `content` is either a plain string or an ordered list of typed parts. The JSON produced by
    `to_wire` is what every backend receives in its `messages` array.
    """
    role: str = Field(..., description="system, user or assistant")
    content: Union[str, List[ContentPart]]

    @property
    def is_multimodal(self) -> bool:
        return not isinstance(self.content, str)

    def image_parts(self) -> List[ImageUrlPart]:
        if isinstance(self.content, str):
            return []
        return [part for part in self.content if isinstance(part, ImageUrlPart)]

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)
