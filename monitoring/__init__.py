"""
Monitoring package initializer.

This package exposes Prometheus metrics and helper decorators for tracking backend latency,
RAG synchronization outcomes and orchestration errors.
"""

from .metrics import (
    REQUEST_COUNT,
    REQUEST_LATENCY,
    ERROR_COUNT,
    ORCHESTRATION_TIME,
    BACKEND_REQUEST_TIME,
    RAG_UPLOAD_COUNT,
    RAG_SYNC_RESULTS,
    track_latency,
    track_errors,
    record_sync_stats,
)

__all__ = [
    'REQUEST_COUNT',
    'REQUEST_LATENCY',
    'ERROR_COUNT',
    'ORCHESTRATION_TIME',
    'BACKEND_REQUEST_TIME',
    'RAG_UPLOAD_COUNT',
    'RAG_SYNC_RESULTS',
    'track_latency',
    'track_errors',
    'record_sync_stats',
]
