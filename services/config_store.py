"""
Key-value store for backend and service settings.

Admin-level settings (which backends are enabled, their URLs, models, temperatures, RAG
toggles, cached model lists) live in one flat key-value namespace using `<service_id>_<name>`
keys, exactly as the adapters and the mode selector read them. The store is seeded from the
`services` section of config.json, secrets are taken from environment variables, and changes
made at runtime (for example a refreshed model cache) can optionally be persisted to a JSON
file so they survive restarts.
"""

import json
import logging
import os
import threading
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class ConfigStore:
    """
    Thread-safe flat key-value configuration store.

    Args:
        initial (Dict[str, Any], optional): Seed values
        persist_path (str, optional): JSON file that receives every `set`; values already stored
            there override the seed on construction
    """

    def __init__(self, initial: Optional[Dict[str, Any]] = None, persist_path: Optional[str] = None):
        self._values: Dict[str, Any] = dict(initial or {})
        self._lock = threading.Lock()
        self.persist_path = persist_path
        if persist_path:
            self._values.update(self._load(persist_path))

    @staticmethod
    def _load(path: str) -> Dict[str, Any]:
        if not os.path.exists(path):
            return {}
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Could not read persisted configuration %s: %s", path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._values.get(key, default)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._values[key] = value
            if self.persist_path:
                self._persist()

    def _persist(self) -> None:
        # Secrets come from the environment and are never written back to disk
        data = {k: v for k, v in self._values.items() if not k.endswith('_api_token')}
        directory = os.path.dirname(self.persist_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(self.persist_path, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=4)

    def as_dict(self) -> Dict[str, Any]:
        with self._lock:
            return dict(self._values)


def build_config_store(config: Dict[str, Any], env: Dict[str, Optional[str]], persist: bool = True) -> ConfigStore:
    """
    Create the application's ConfigStore from CONFIG and ENV.

    Every `services.<id>` section of CONFIG contributes its keys, tokens are added from ENV
    (`RAMSES_API_TOKEN` becomes `ramses_api_token`), and the `chat` section provides the
    service-wide upload and memory limits.

    Args:
        config (Dict[str, Any]): The global CONFIG mapping
        env (Dict[str, Optional[str]]): The ENV mapping of secrets
        persist (bool): Whether runtime changes are written to the configured JSON file

    Returns:
        ConfigStore: The populated store.
    """
    values: Dict[str, Any] = {}
    for service_cfg in (config.get('services') or {}).values():
        values.update(service_cfg or {})
    values.update(config.get('chat') or {})
    for env_name, env_value in env.items():
        if env_value:
            values[env_name.lower()] = env_value

    persist_path = config.get('storage', {}).get('config_store_full_path') if persist else None
    return ConfigStore(values, persist_path=persist_path)
