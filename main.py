""" main.py: FastAPI application entry point and runtime configuration.

This module builds the ASGI app, wires the stores, backend registry and services into it, mounts the API routers,
configures CORS (Cross-Origin Resource Sharing) and exposes a Prometheus metrics endpoint. Construction lives in
`create_app()` so tests can build an app around their own service container; `app` is the instance served by
Uvicorn. When executed directly, the module starts a Uvicorn server using host/port values from configuration.
"""

import time
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import make_asgi_app
import logging
from config import CONFIG, ENV
from monitoring.metrics import REQUEST_COUNT, REQUEST_LATENCY
from version import __version__

# --- Router Imports ---
from api import backends as backends_router
from api import chat as chat_router
from api.dependencies import ServiceContainer, build_services

# Get a logger instance for this module
logger = logging.getLogger(__name__)


def create_app(services: Optional[ServiceContainer] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        services (ServiceContainer, optional): Pre-built collaborators; built from CONFIG and ENV when omitted

    Returns:
        FastAPI: The configured application.
    """
    application = FastAPI(title="Chat Orchestration Service", version=__version__)
    application.state.services = services or build_services(CONFIG, ENV)

    # Include routers
    application.include_router(chat_router.router, prefix="/api", tags=["Chat"])
    application.include_router(backends_router.router, prefix="/api", tags=["Backends"])

    @application.middleware("http")
    async def record_request_metrics(request: Request, call_next):
        start_time = time.time()
        response = await call_next(request)
        # Route template keeps the label set bounded (no chat ids in labels)
        route = request.scope.get("route")
        endpoint = getattr(route, "path", request.url.path)
        REQUEST_LATENCY.labels(method=request.method, endpoint=endpoint).observe(time.time() - start_time)
        REQUEST_COUNT.labels(method=request.method, endpoint=endpoint, status=response.status_code).inc()
        return response

    # Add Prometheus metrics endpoint
    application.mount("/metrics", make_asgi_app())

    # Configure CORS
    allow_origins = CONFIG.get('cors', {}).get('allow_origins', ["*"])
    application.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    return application


app = create_app()

# The uvicorn server is used to run the FastAPI application.
if __name__ == '__main__':
    import uvicorn
    logger.info("[__main__] Starting Uvicorn server for main.py (version %s)", __version__)
    uvicorn.run(
        app,
        host=CONFIG.get('server', {}).get('host', '0.0.0.0'),
        port=CONFIG.get('server', {}).get('port', 8080)
    )
