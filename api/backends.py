"""
api/backends.py

Endpoints describing the AI backends: which are enabled, what they can do, and which models
they offer.

Endpoints:
  - GET /backends: Enabled backends with display names and their cached model lists.
  - GET /backends/{service_id}/capabilities: Capability flags and file types of a backend.
  - POST /backends/{service_id}/models/refresh: Fetch the model list and cache it.
"""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from shared.errors import ConfigurationError

from .dependencies import ServiceContainer, error_response, get_services

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/backends")
def list_backends(services: ServiceContainer = Depends(get_services)):
    registry = services.registry
    models = {}
    for service_id in registry.enabled_backends():
        try:
            backend = registry.create(service_id)
        except ConfigurationError as e:
            logger.warning("Backend %s listed without models: %s", service_id, e)
            continue
        if backend is not None:
            models[service_id] = backend.cached_models()
    return {
        "available": sorted(registry.available_backends()),
        "enabled": list(registry.enabled_backends()),
        "options": registry.service_options(),
        "models": models,
    }


@router.get("/backends/{service_id}/capabilities")
def backend_capabilities(service_id: str, services: ServiceContainer = Depends(get_services)):
    capabilities = services.registry.capabilities(service_id)
    if capabilities is None:
        return JSONResponse({"error": f"Unknown backend '{service_id}'"}, status_code=404)
    return {"service_id": service_id, **capabilities.to_dict()}


@router.post("/backends/{service_id}/models/refresh")
def refresh_models(service_id: str, services: ServiceContainer = Depends(get_services)):
    """Query the backend's model list and store it under `<service_id>_cached_models`."""
    try:
        backend = services.registry.create(service_id)
        if backend is None:
            return JSONResponse({"error": f"Unknown backend '{service_id}'"}, status_code=404)
        models = backend.refresh_models()
    except Exception as e:
        return error_response(e, "refresh_models")
    logger.info("Refreshed %d models for %s", len(models), service_id)
    return {"success": True, "models": models}
