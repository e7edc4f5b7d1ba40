"""
Core metrics and monitoring decorators for the chat service.

This module defines Prometheus metrics and decorators for tracking:
- HTTP request latency and counts
- Error rates per component
- End-to-end turn processing time
- Backend request latency (chat, RAG chat, upload, delete, model listing)
- RAG upload outcomes and synchronization counters
"""

import time
import functools
import logging
from typing import Optional, Callable
from prometheus_client import Counter, Histogram

# Configure logger
logger = logging.getLogger(__name__)

# Request metrics
REQUEST_COUNT = Counter(
    'http_requests_total',
    'Total number of HTTP requests',
    ['method', 'endpoint', 'status']
)

REQUEST_LATENCY = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint'],
    buckets=[0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, float("inf")]
)

# Error metrics
ERROR_COUNT = Counter(
    'error_total',
    'Total number of errors',
    ['type', 'location']  # type: e.g. 'backend', 'orchestration'; location: specific component
)

# Turn processing
ORCHESTRATION_TIME = Histogram(
    'chat_turn_duration_seconds',
    'Time spent handling one send-message turn',
    ['ai_service'],
    buckets=[0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0, float("inf")]
)

# External API metrics
BACKEND_REQUEST_TIME = Histogram(
    'backend_request_duration_seconds',
    'Time spent waiting for an AI backend',
    ['backend', 'operation'],
    buckets=[0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 120.0, float("inf")]
)

RAG_UPLOAD_COUNT = Counter(
    'rag_uploads_total',
    'Files uploaded to a retrieval collection',
    ['backend', 'status']  # status: 'success' or 'failure'
)

RAG_SYNC_RESULTS = Counter(
    'rag_sync_items_total',
    'Per-attachment outcomes of RAG synchronization',
    ['scope', 'outcome']  # scope: 'background' or 'chat'; outcome: 'uploaded', 'skipped', 'errors'
)

def track_latency(metric: Histogram, labels: Optional[Callable] = None) -> Callable:
    """
    A decorator factory that tracks the execution time of a function using a Prometheus Histogram.

    Args:
        metric (Histogram): The Prometheus Histogram to record the timing in
        labels (Callable, optional): Function that receives the bound instance (first positional
            argument) and returns the metric labels dictionary

    Returns:
        Callable: The decorated function
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            start_time = time.perf_counter()
            try:
                return func(*args, **kwargs)
            finally:
                duration = time.perf_counter() - start_time
                if labels and args:
                    # For instance methods, first arg is 'self'
                    metric.labels(**labels(args[0])).observe(duration)
                else:
                    metric.observe(duration)

                logger.debug(
                    "Function %s execution time: %.2f seconds",
                    func.__name__,
                    duration,
                    extra={'duration': duration, 'function': func.__name__}
                )
        return wrapper
    return decorator

def track_errors(error_type: str, location: str) -> Callable:
    """
    A decorator factory that counts exceptions raised by a function and re-raises them.

    Args:
        error_type (str): Type of error (e.g., 'backend', 'orchestration')
        location (str): Where the error occurred

    Returns:
        Callable: The decorated function

    Example:
        @track_errors('orchestration', 'send_message')
        def handle_send_message(self, chat_id, user_id, text):
            ...
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except Exception as e:
                ERROR_COUNT.labels(type=error_type, location=location).inc()
                logger.warning(
                    "Error in %s (%s): %s",
                    location,
                    error_type,
                    e,
                    extra={'error_type': error_type, 'location': location}
                )
                raise  # Re-raise the exception after tracking
        return wrapper
    return decorator

def record_sync_stats(scope: str, stats) -> None:
    """Add one SyncStats result to the RAG_SYNC_RESULTS counters."""
    for outcome, value in stats.to_dict().items():
        if value:
            RAG_SYNC_RESULTS.labels(scope=scope, outcome=outcome).inc(value)
