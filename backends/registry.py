"""
Backend registry: selects a backend adapter by its service id.

The registry is a plain mapping from service id to a constructor, built from an explicit list
of adapter classes. Selection mirrors a provider factory: callers pass the id stored on the chat
(`"ramses"`, `"openai"`), and the registry builds the adapter from the configuration store.
Admin configuration decides which backends are offered (`<id>_service_enabled == "1"`); an
unknown id yields None so callers can decide whether that is a configuration error.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, Optional

from shared.models import BackendCapabilities
from .base import BackendAdapter, config_flag
from .openai_backend import OpenAIBackend
from .ramses import RamsesBackend

logger = logging.getLogger(__name__)

ADAPTER_CLASSES = (RamsesBackend, OpenAIBackend)


class BackendRegistry:
    """
    Lookup of backend adapters by service id.

    Args:
        config_store: Configuration store consulted for enable flags and adapter settings
        adapters (dict, optional): Override of the id-to-class mapping, mainly for tests
    """

    def __init__(self, config_store, adapters: Optional[Dict[str, type]] = None):
        self.config_store = config_store
        self._adapters = dict(adapters) if adapters is not None else {cls.service_id: cls for cls in ADAPTER_CLASSES}

    def available_backends(self) -> Dict[str, Callable[..., BackendAdapter]]:
        """All known backends as `{service_id: constructor}`; each constructor takes the config store."""
        return {service_id: cls.from_config for service_id, cls in self._adapters.items()}

    def enabled_backends(self) -> Dict[str, Callable[..., BackendAdapter]]:
        """The subset of available backends switched on by the administrator."""
        return {
            service_id: constructor
            for service_id, constructor in self.available_backends().items()
            if config_flag(self.config_store.get(f"{service_id}_service_enabled"))
        }

    def create(self, service_id: str) -> Optional[BackendAdapter]:
        """
        Build the adapter for `service_id` from the configuration store.

        Returns:
            Optional[BackendAdapter]: The adapter, or None when the id is unknown.

        Raises:
            ConfigurationError: When the backend is known but its token is not configured.
        """
        key = (service_id or "").strip().lower()
        cls = self._adapters.get(key)
        if cls is None:
            logger.warning("Unknown backend requested: %s", service_id)
            return None
        logger.debug("Backend selection: %s", key)
        return cls.from_config(self.config_store)

    def service_options(self) -> Dict[str, str]:
        """Display names of the enabled backends, for selection lists."""
        return {
            service_id: self._adapters[service_id].service_name
            for service_id in self.enabled_backends()
        }

    def capabilities(self, service_id: str) -> Optional[BackendCapabilities]:
        """Capability flags of a backend without needing its credentials."""
        cls = self._adapters.get((service_id or "").strip().lower())
        if cls is None:
            return None
        return cls.CAPABILITIES
