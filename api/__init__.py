"""
api/__init__.py

FastAPI routers of the chat service.

- chat: chat configuration, message sending (plain and streamed), uploads, deletion, loading
  and clearing of conversations
- backends: backend listing, capabilities and model refresh
- dependencies: construction of the shared services and the error-to-response mapping

Routers are mounted by main.py under the `/api` prefix.
"""
