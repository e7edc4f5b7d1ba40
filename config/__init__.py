import os
import json
from pathlib import Path
from dotenv import load_dotenv
from .logging_config import setup_app_logging
import logging

# Backend tokens and logging overrides come from .env
load_dotenv()

CONFIG_DIR = Path(__file__).parent

PROJECT_ROOT = CONFIG_DIR.parent

# CHAT_CONFIG_PATH points a deployment at its own config.json
config_path = Path(os.getenv('CHAT_CONFIG_PATH') or CONFIG_DIR / 'config.json')
with open(config_path, 'r', encoding='utf-8') as f:
    CONFIG = json.load(f)

CONFIG['project_root'] = str(PROJECT_ROOT)

# Relative storage names in config.json -> absolute paths under the project root
STORAGE_DEFAULTS = {
    'blob_dir': ('blob_dir_name', 'user_data/blobs'),
    'config_store': ('config_store_file', 'user_data/service_config.json'),
    'pages_dir': ('pages_dir_name', 'user_data/pages'),
}
storage = CONFIG.setdefault('storage', {})
for prefix, (name_key, default_name) in STORAGE_DEFAULTS.items():
    storage[f'{prefix}_full_path'] = str(PROJECT_ROOT / storage.get(name_key, default_name))

# Secrets never live in config.json. A missing token only disables its backend.
ENV = {
    'RAMSES_API_TOKEN': os.getenv('RAMSES_API_TOKEN'),
    'OPENAI_API_TOKEN': os.getenv('OPENAI_API_TOKEN'),
}

def validate_config():
    """Check that config.json has the sections the service layer reads.

    Every backend section has to name its enabled flag and API URL. Tokens are not
    checked here; the registry raises ConfigurationError when a chat asks for a
    backend whose token is empty.
    """
    missing = [section for section in ('services', 'chat') if section not in CONFIG]
    if missing:
        raise ValueError(f"Missing configuration section(s): {', '.join(missing)}")

    for service_id, service_cfg in CONFIG['services'].items():
        absent = [
            f"{service_id}_{suffix}" for suffix in ('service_enabled', 'api_url')
            if f"{service_id}_{suffix}" not in service_cfg
        ]
        if absent:
            raise ValueError(f"Backend '{service_id}' is missing: {', '.join(absent)}")

validate_config()

def _coerce_env(raw: str, default_value):
    """Convert an environment string to the type of default_value where that is unambiguous."""
    if isinstance(default_value, bool):
        lowered = raw.lower()
        if lowered in ('1', 'true', 'yes'):
            return True
        if lowered in ('0', 'false', 'no'):
            return False
        return default_value
    if isinstance(default_value, int):
        try:
            return int(raw)
        except ValueError:
            return None
    return raw

def get_config_value(json_keys: list, env_var_name: str, default_value: any = None):
    """
    Look up a setting: environment variable first, then the nested CONFIG path, then default_value.

    An environment value that cannot be read as the default's type is ignored.
    """
    raw = os.getenv(env_var_name) if env_var_name else None
    if raw is not None:
        value = _coerce_env(raw, default_value)
        if value is not None:
            return value

    node = CONFIG
    for key in json_keys:
        if not isinstance(node, dict) or key not in node:
            return default_value
        node = node[key]
    return node

# LOG_FILE_PATH="" turns off the rotating file handler (the test suite does this)
CONFIG['logging'] = {
    'level': get_config_value(['logging', 'level'], 'LOG_LEVEL', 'INFO'),
    'file_path': get_config_value(['logging', 'file_path'], 'LOG_FILE_PATH', 'logs/chat_orchestrator.log'),
    'max_bytes': get_config_value(['logging', 'max_bytes'], 'LOG_MAX_BYTES', 5*1024*1024),
    'backup_count': get_config_value(['logging', 'backup_count'], 'LOG_BACKUP_COUNT', 3),
    'date_format': get_config_value(['logging', 'date_format'], 'LOG_DATE_FORMAT', '%Y-%m-%d %H:%M:%S'),
}

setup_app_logging(config=CONFIG['logging'])

logging.getLogger(__name__).info("Configuration loaded from %s", config_path)
