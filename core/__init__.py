"""
core/__init__.py

Conversation orchestration modules.

This package contains the turn-processing logic of the chat service:
- mode_selector: RAG vs. multimodal decision per turn
- context_assembler: background files and page text as context resources
- message_formatter: conversation history in the outbound wire format
- rag_sync: mirroring of local attachments into the retrieval store
- orchestrator: the send-message pipeline
- attachments: upload, delete, clear and load flows around a chat

These modules depend only on the store interfaces and the backend adapter contract.
"""
