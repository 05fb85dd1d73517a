"""
Centralized logging configuration for the Althea backend.

Console output is human-readable and coloured; file output is one JSON
object per line in a rotating file. Structured context travels on the
record as ``extra={"extra_fields": {...}}``.
"""

import copy
import json
import logging
import logging.handlers
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional


# Keys masked before anything reaches a handler. Health fields are included
# because request bodies and audit payloads can carry them.
SENSITIVE_KEYS = [
    'password',
    'token',
    'secret',
    'authorization',
    'api_key',
    'api-key',
    'medical_history_notes',
    'date_of_birth',
]

FILTERED = "***FILTERED***"


class ColoredFormatter(logging.Formatter):
    """Formatter that colours the level name for terminal output."""

    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
        'RESET': '\033[0m',
    }

    def format(self, record: logging.LogRecord) -> str:
        # Other handlers share the record, so colour a copy.
        colored = copy.copy(record)
        level_color = self.COLORS.get(record.levelname, self.COLORS['RESET'])
        colored.levelname = f"{level_color}{record.levelname:8s}{self.COLORS['RESET']}"
        return super().format(colored)


class JSONFormatter(logging.Formatter):
    """Formatter that emits structured JSON log lines."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "function": record.funcName,
            "line": record.lineno,
            "message": record.getMessage(),
        }

        extra_fields = getattr(record, 'extra_fields', None)
        if extra_fields:
            log_data.update(filter_sensitive_data(extra_fields))

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False, default=str)


def setup_logging(config: Any) -> None:
    """
    Configure the root logger from a Settings object.

    Args:
        config: Settings object with the ``log_*`` fields
    """
    root_logger = logging.getLogger()
    root_logger.handlers.clear()

    log_level = getattr(logging, config.log_level.upper(), logging.INFO)
    root_logger.setLevel(log_level)

    if config.log_console_enabled:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(log_level)
        console_handler.setFormatter(ColoredFormatter(
            "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        ))
        root_logger.addHandler(console_handler)

    if config.log_file_enabled:
        log_path = Path(config.log_file_path)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        # 10 MB per file, 5 backups
        file_handler = logging.handlers.RotatingFileHandler(
            filename=config.log_file_path,
            maxBytes=10 * 1024 * 1024,
            backupCount=5,
            encoding='utf-8'
        )
        file_handler.setLevel(log_level)

        if config.log_json_format:
            file_formatter = JSONFormatter()
        else:
            file_formatter = logging.Formatter(
                "%(asctime)s | %(levelname)s | %(name)s:%(funcName)s:%(lineno)d | %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S"
            )

        file_handler.setFormatter(file_formatter)
        root_logger.addHandler(file_handler)

    # Third-party noise
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("multipart").setLevel(logging.WARNING)

    root_logger.info(
        f"Logging initialized: level={config.log_level.upper()}, "
        f"console={config.log_console_enabled}, "
        f"file={config.log_file_enabled}"
    )


class ContextLoggerAdapter(logging.LoggerAdapter):
    """
    Logger adapter that attaches bound context to every record.

    Usage:
        log = ContextLoggerAdapter(logger, {"user_id": user_id, "session_id": sid})
        log.info("Stage changed")  # user_id and session_id land in extra_fields
    """

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        extra = kwargs.setdefault('extra', {})
        extra['extra_fields'] = {**self.extra, **extra.get('extra_fields', {})}
        return msg, kwargs


def bind_context(logger: logging.Logger, **context: Any) -> ContextLoggerAdapter:
    """Return an adapter that stamps ``context`` onto every record of ``logger``."""
    return ContextLoggerAdapter(logger, context)


def filter_sensitive_data(data: Any, sensitive_keys: Optional[list] = None) -> Any:
    """
    Mask sensitive values in nested dicts and lists.

    Args:
        data: Data to filter (dict, list, or primitive)
        sensitive_keys: Key fragments to mask (defaults to SENSITIVE_KEYS)

    Returns:
        A copy with matching values replaced by "***FILTERED***"
    """
    if sensitive_keys is None:
        sensitive_keys = SENSITIVE_KEYS

    if isinstance(data, dict):
        return {
            key: FILTERED if any(sensitive in str(key).lower() for sensitive in sensitive_keys)
            else filter_sensitive_data(value, sensitive_keys)
            for key, value in data.items()
        }
    elif isinstance(data, list):
        return [filter_sensitive_data(item, sensitive_keys) for item in data]
    else:
        return data


def truncate_large_data(data: str, max_length: int = 5000) -> str:
    """Truncate a string for logging, noting the original length."""
    if len(data) <= max_length:
        return data
    return data[:max_length] + f"... (truncated, total length: {len(data)})"
