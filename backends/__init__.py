"""
Backend adapters for the AI chat services.

Each adapter turns formatted conversation history and context resources into one backend's
wire dialect. The registry selects an adapter by the service id stored on a chat.
"""

from .base import BackendAdapter
from .registry import BackendRegistry

__all__ = ['BackendAdapter', 'BackendRegistry']
