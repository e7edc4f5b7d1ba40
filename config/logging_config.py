"""
Centralized logging configuration for the chat orchestration service.

Every record is rendered as one JSON object so that chat and stage identifiers
attached through ``extra={...}`` survive into log aggregation. Output goes to
stdout and, when a path is configured, to a size-rotated file.
"""

import logging
import logging.handlers # Required for RotatingFileHandler
import os
import sys
import json
from typing import Optional

# Attributes every LogRecord carries; anything else came in through `extra`.
_STANDARD_RECORD_FIELDS = set(vars(logging.LogRecord('', 0, '', 0, '', (), None))) | {'message', 'asctime'}

DEFAULT_LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'
DEFAULT_MAX_BYTES = 5 * 1024 * 1024
DEFAULT_BACKUP_COUNT = 3

# HTTP and imaging libraries log every request or decode step at DEBUG
QUIET_LOGGERS = ('urllib3', 'httpx', 'httpcore', 'openai', 'PIL')


class StructuredLogFormatter(logging.Formatter):
    """
    Formatter producing one JSON document per record.

    Fields:
    - timestamp, level, logger, message
    - chat_id and stage from the adapter returned by get_logger
    - any other `extra` field (attachment ids, statuses, counts)
    - exception, when the record carries exc_info
    """

    def format(self, record):
        entry = {
            'timestamp': self.formatTime(record, self.datefmt),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage()
        }
        entry.update(
            (key, value) for key, value in vars(record).items()
            if key not in _STANDARD_RECORD_FIELDS and not key.startswith('_')
        )
        if record.exc_info:
            entry['exception'] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def get_logger(name: str) -> logging.LoggerAdapter:
    """
    Get a logger that always carries the chat correlation fields.

    Args:
        name (str): Logger name (usually __name__)

    Returns:
        logging.LoggerAdapter: Logger whose records include chat_id and stage
    """
    return logging.LoggerAdapter(logging.getLogger(name), {
        'chat_id': 'no_chat',
        'stage': 'no_stage'
    })


def resolve_level(value, default_level: int = logging.INFO) -> int:
    """Map a level name such as "debug" to its numeric value, falling back to default_level."""
    level = logging.getLevelName(str(value).upper())
    if isinstance(level, int):
        return level
    print(f"Warning: unknown log level '{value}', using {logging.getLevelName(default_level)}.", file=sys.stderr)
    return default_level


def build_file_handler(config: dict, formatter: logging.Formatter) -> Optional[logging.Handler]:
    """Create the rotating file handler, or None when file logging is off or cannot be set up."""
    log_file_path = config.get('file_path')
    if not log_file_path:
        return None

    try:
        log_dir = os.path.dirname(log_file_path)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        handler = logging.handlers.RotatingFileHandler(
            log_file_path,
            maxBytes=int(config.get('max_bytes', DEFAULT_MAX_BYTES)),
            backupCount=int(config.get('backup_count', DEFAULT_BACKUP_COUNT)),
            encoding='utf-8'
        )
    except (OSError, ValueError) as e:
        print(f"File logging to {log_file_path} disabled: {e}", file=sys.stderr)
        return None

    handler.setFormatter(formatter)
    return handler


def setup_app_logging(config: dict = None, default_level=logging.INFO) -> None:
    """
    Configure the root logger for the whole service.

    Existing root handlers are replaced, so calling this twice (app start plus tests)
    does not duplicate output.

    Args:
        config (dict, optional): The `logging` section of CONFIG. Recognised keys:
                                - 'level': level name, e.g. "DEBUG"
                                - 'file_path': log file; empty disables file logging
                                - 'max_bytes' / 'backup_count': rotation settings
                                - 'date_format': timestamp format
        default_level (int, optional): Level used when 'level' is missing or unknown.
    """
    config = config or {}
    level = resolve_level(config.get('level', logging.getLevelName(default_level)), default_level)
    formatter = StructuredLogFormatter(datefmt=config.get('date_format', DEFAULT_LOG_DATE_FORMAT))

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    file_handler = build_file_handler(config, formatter)
    if file_handler is not None:
        root_logger.addHandler(file_handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.INFO))

    get_logger(__name__).info(
        "Logging configured",
        extra={'level': logging.getLevelName(level), 'file_logging': file_handler is not None}
    )
