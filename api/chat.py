"""
api/chat.py

HTTP endpoints for conversations: chat configuration, sending messages (whole or streamed as
server-sent events), file uploads, attachment deletion, loading and clearing a conversation,
and the upload rules of a chat.

Endpoints:
  - PUT /chats/{chat_id}: Create or replace a chat configuration.
  - GET /chats/{chat_id}: Load configuration, session and recent messages of a user.
  - POST /chats/{chat_id}/messages: Send a message and return the full answer.
  - POST /chats/{chat_id}/messages/stream: Send a message and stream the answer as SSE.
  - POST /chats/{chat_id}/attachments: Upload a chat file or a background file.
  - DELETE /attachments/{attachment_id}: Delete an attachment and its remote RAG copy.
  - DELETE /chats/{chat_id}/session: Clear a user's conversation in a chat.
  - GET /chats/{chat_id}/upload-config: Upload rules for the chat's current mode.

Send handlers are plain functions, so FastAPI runs them in its thread pool; the backend calls
underneath are blocking.
"""

from __future__ import annotations

import json
import logging
import queue
import threading
from typing import Iterator, List, Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field

from shared.errors import ChatNotFoundError
from shared.models import ChatConfiguration
from .dependencies import ServiceContainer, error_response, get_services

logger = logging.getLogger(__name__)

router = APIRouter()


class ChatConfigRequest(BaseModel):
    """Settings of a chat as managed by its owner."""

    ai_service: str = Field("ramses", description="Backend service id")
    system_prompt: str = ""
    max_memory: int = Field(10, ge=1)
    char_limit: int = Field(2000, ge=1)
    enable_rag: bool = False
    include_page_context: bool = False
    enable_streaming: bool = True
    enable_chat_uploads: bool = True
    title: str = ""
    page_id: Optional[int] = None
    parent_id: Optional[int] = None
    parent_type: str = ""
    disclaimer: str = ""


class SendMessageRequest(BaseModel):
    user_id: int = Field(..., description="Sending user")
    message: str = Field(..., min_length=1, description="Message text")
    attachment_ids: List[int] = Field(default_factory=list, description="Uploaded chat attachments to bind")


def _sse(payload: dict) -> str:
    return f"data: {json.dumps(payload)}\n\n"


def _check_message(services: ServiceContainer, chat_id: str, req: SendMessageRequest) -> Optional[JSONResponse]:
    chat_config = services.chat_store.get_chat_config(chat_id)
    if chat_config is None:
        return error_response(ChatNotFoundError(f"Chat configuration not found for chat {chat_id}"), "send_message")
    if len(req.message) > chat_config.char_limit:
        return JSONResponse(
            {"error": f"Message exceeds the limit of {chat_config.char_limit} characters"},
            status_code=400,
        )
    return None


@router.put("/chats/{chat_id}")
def save_chat_config(chat_id: str, req: ChatConfigRequest, services: ServiceContainer = Depends(get_services)):
    """
    Create or replace the configuration of a chat.

    An existing RAG collection id is carried over, since it belongs to the chat's remote
    state rather than to its settings.
    """
    existing = services.chat_store.get_chat_config(chat_id)
    config = ChatConfiguration(
        chat_id=chat_id,
        rag_collection_id=existing.rag_collection_id if existing else None,
        **req.model_dump(),
    )
    services.chat_store.save_chat_config(config)
    logger.info("Saved configuration of chat %s (service %s)", chat_id, config.ai_service)
    return {"success": True, "config": config.to_dict()}


@router.get("/chats/{chat_id}")
def load_chat(chat_id: str, user_id: int, services: ServiceContainer = Depends(get_services)):
    try:
        data = services.attachments.load_chat(chat_id, user_id)
    except Exception as e:
        return error_response(e, "load_chat")
    return {"success": True, **data}


@router.post("/chats/{chat_id}/messages")
def send_message(chat_id: str, req: SendMessageRequest, services: ServiceContainer = Depends(get_services)):
    """
    Process one user message and return the assistant's answer.

    Returns:
        JSONResponse: `{success: true, message}` on success; `{error}` with 400 for an
        over-long message, 404 for an unknown chat, 502 for backend failures, 500 otherwise.
    """
    rejected = _check_message(services, chat_id, req)
    if rejected is not None:
        return rejected
    try:
        answer = services.orchestrator.handle_send_message(
            chat_id, req.user_id, req.message, attachment_ids=req.attachment_ids
        )
    except Exception as e:
        return error_response(e, "send_message")
    return {"success": True, "message": answer}


def _stream_events(services: ServiceContainer, chat_id: str, req: SendMessageRequest) -> Iterator[str]:
    """
    Run the turn on a worker thread and relay its chunk events as they arrive.

    Event order: one `start`, any number of `chunk` events, then `complete` with the full
    answer or `error`.
    """
    events: "queue.Queue[Optional[str]]" = queue.Queue()
    outcome: dict = {}

    def run_turn():
        try:
            outcome["message"] = services.orchestrator.handle_send_message(
                chat_id, req.user_id, req.message, attachment_ids=req.attachment_ids, sink=events.put
            )
        except Exception as e:
            outcome["error"] = e
        finally:
            events.put(None)

    yield _sse({"type": "start"})
    worker = threading.Thread(target=run_turn, name=f"chat-stream-{chat_id}", daemon=True)
    worker.start()
    while True:
        event = events.get()
        if event is None:
            break
        yield event
    worker.join()

    if "error" in outcome:
        logger.error("Streamed message in chat %s failed: %s", chat_id, outcome["error"])
        yield _sse({"type": "error", "error": str(outcome["error"])})
    else:
        yield _sse({"type": "complete", "message": outcome["message"]})


@router.post("/chats/{chat_id}/messages/stream")
def stream_message(chat_id: str, req: SendMessageRequest, services: ServiceContainer = Depends(get_services)):
    """Send a message and stream the answer as `text/event-stream`."""
    rejected = _check_message(services, chat_id, req)
    if rejected is not None:
        return rejected
    return StreamingResponse(
        _stream_events(services, chat_id, req),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.post("/chats/{chat_id}/attachments")
def upload_attachment(
    chat_id: str,
    file: UploadFile = File(...),
    user_id: int = Form(...),
    background: bool = Form(False),
    services: ServiceContainer = Depends(get_services),
):
    """Upload a file, either for the next message or as a background file of the chat."""
    data = file.file.read()
    filename = file.filename or "upload"
    try:
        if background:
            attachment = services.attachments.upload_background_file(chat_id, user_id, filename, data)
        else:
            attachment = services.attachments.upload_chat_file(chat_id, user_id, filename, data)
    except Exception as e:
        return error_response(e, "upload_attachment")
    return {"success": True, "attachment": services.attachments.attachment_summary(attachment)}


@router.delete("/attachments/{attachment_id}")
def delete_attachment(attachment_id: int, services: ServiceContainer = Depends(get_services)):
    try:
        deleted = services.attachments.delete_attachment(attachment_id)
    except Exception as e:
        return error_response(e, "delete_attachment")
    if not deleted:
        return JSONResponse({"error": f"Attachment {attachment_id} not found"}, status_code=404)
    return {"success": True}


@router.delete("/chats/{chat_id}/session")
def clear_chat(chat_id: str, user_id: int, services: ServiceContainer = Depends(get_services)):
    try:
        services.attachments.clear_chat(chat_id, user_id)
    except Exception as e:
        return error_response(e, "clear_chat")
    return {"success": True}


@router.get("/chats/{chat_id}/upload-config")
def upload_config(chat_id: str, services: ServiceContainer = Depends(get_services)):
    try:
        return {"success": True, **services.attachments.upload_config(chat_id)}
    except Exception as e:
        return error_response(e, "upload_config")
