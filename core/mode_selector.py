"""
core/mode_selector.py

Per-turn decision between RAG mode and multimodal mode.

RAG is *enabled* for a chat when three independent switches agree: the backend can do RAG,
the administrator turned RAG on for that backend (`<service_id>_enable_rag`), and the chat
itself opted in. RAG is *active* for a turn only if, in addition, the chat already has at
least one remote collection to retrieve from. Nothing here is cached; the decision is
recomputed every turn from the current state.
"""

from typing import Iterable, Optional

from backends.base import config_flag
from shared.models import ChatConfiguration, ModeDecision


def is_rag_enabled_for_chat(backend, chat_config: ChatConfiguration, config_store) -> bool:
    """Three-way gate: backend capability AND admin toggle AND chat toggle."""
    if backend is None or not backend.supports_rag():
        return False
    if not config_flag(config_store.get(f"{backend.service_id}_enable_rag")):
        return False
    return bool(chat_config.enable_rag)


def is_rag_active(
    backend,
    chat_config: ChatConfiguration,
    config_store,
    collection_ids: Optional[Iterable[str]],
) -> bool:
    """The three-way gate AND at least one collection id."""
    return is_rag_enabled_for_chat(backend, chat_config, config_store) and bool(list(collection_ids or ()))


def decide_mode(
    backend,
    chat_config: ChatConfiguration,
    config_store,
    collection_ids: Optional[Iterable[str]] = None,
) -> ModeDecision:
    return ModeDecision(
        rag_enabled=is_rag_enabled_for_chat(backend, chat_config, config_store),
        collection_ids=tuple(collection_ids or ()),
    )
