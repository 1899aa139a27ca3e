"""
Structured logging for the integrations service.

Every record carries the request trace id. Job lifecycle records also carry
``job_id``, ``tenant_id`` and ``provider_slug`` so one job can be followed
from admission through dispatch to its final state.
"""

import contextvars
import json
import logging
import logging.config
import os
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import yaml

from .config import LOG_FORMAT, LOG_LEVEL

# Trace id of the request being served, set by TracingMiddleware
trace_id_var = contextvars.ContextVar('trace_id', default=None)

# Emitted on every JSON line, None when the record does not set them
STRUCTURED_FIELDS = (
    'method', 'path', 'status', 'latency_ms', 'client_ip', 'actor_id',
    'tenant_id', 'provider_slug', 'job_id',
)

# LogRecord internals never copied into the JSON line
_RECORD_ATTRS = frozenset(vars(logging.LogRecord('', 0, '', 0, '', (), None))) | {'message', 'asctime'}

def get_trace_id() -> Optional[str]:
    return trace_id_var.get()

def log_job_event(event_type: str, message: str, **kwargs):
    """Job lifecycle event (created, reclaimed, finished) on the service logger"""
    logging.getLogger("integrations_api").info(message, extra={
        "event_type": event_type,
        "component": "jobs",
        **kwargs,
    })

class JsonFormatter(logging.Formatter):
    """One JSON object per record: fixed envelope, structured fields, then extras"""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "trace_id": get_trace_id(),
            "component": getattr(record, 'component', 'api'),
        }
        for name in STRUCTURED_FIELDS:
            entry[name] = getattr(record, name, None)

        for key, value in record.__dict__.items():
            if key not in _RECORD_ATTRS and key not in entry:
                entry[key] = value

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)

def _default_config(level: str, fmt: str) -> dict:
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {"()": JsonFormatter},
            "text": {
                "format": "%(asctime)s %(levelname)s [%(name)s] %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": fmt,
                "stream": "ext://sys.stdout",
            },
        },
        "loggers": {
            name: {"level": level}
            for name in ("integrations_api", "uvicorn", "uvicorn.error", "uvicorn.access")
        },
        "root": {"level": level, "handlers": ["console"]},
    }

def _load_yaml(path: str) -> Optional[dict]:
    if not os.path.exists(path):
        return None
    try:
        with open(path, 'r') as f:
            return yaml.safe_load(f) or None
    except (OSError, yaml.YAMLError) as e:
        print(f"Warning: could not load {path}: {e}")
        return None

def setup_logging(config_path: str = "LOGGING.yaml", level: str = LOG_LEVEL, fmt: str = LOG_FORMAT) -> dict:
    """Configure logging from LOGGING.yaml when present, else from LOG_LEVEL/LOG_FORMAT"""
    fmt = fmt if fmt in ("json", "text") else "json"
    config = _load_yaml(config_path) or _default_config(level, fmt)

    # Environment wins over the file for format and level
    if fmt == "text":
        for handler in config.get("handlers", {}).values():
            handler["formatter"] = "text"
    for logger_conf in config.get("loggers", {}).values():
        logger_conf["level"] = level

    logging.config.dictConfig(config)
    return config
