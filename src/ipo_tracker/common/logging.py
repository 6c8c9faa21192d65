"""One-JSON-object-per-line logging shared by the pipeline steps."""
from __future__ import annotations

import json
import logging
import os
import sys
import uuid
from datetime import datetime, timezone
from typing import Any, Dict

RUN_ID_ENV = "IPO_RUN_ID"
LOGGER_PREFIX = "ipo_tracker"
_EXTRA_ATTR = "ipo_extra"
_FALLBACK_RUN_ID = uuid.uuid4().hex


def get_run_id() -> str:
    """Current run id; ``IPO_RUN_ID`` wins over the per-process fallback."""

    return os.getenv(RUN_ID_ENV) or _FALLBACK_RUN_ID


class JsonFormatter(logging.Formatter):
    def __init__(self, component: str, context: Dict[str, Any] | None = None) -> None:
        super().__init__()
        self.component = component
        self.context: Dict[str, Any] = {}
        self.bind(**(context or {}))

    def bind(self, **context: Any) -> None:
        self.context.update({key: value for key, value in context.items() if value is not None})

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "message": record.getMessage(),
            "component": self.component,
            "run_id": get_run_id(),
            **self.context,
        }
        fields = getattr(record, _EXTRA_ATTR, None) or {}
        payload.update({key: value for key, value in fields.items() if value is not None})
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def setup_logger(component: str, **context: Any) -> logging.Logger:
    """Return the ``ipo_tracker.<component>`` logger, binding *context*.

    The stdout handler is attached once; later calls only add context.
    """

    logger = logging.getLogger(f"{LOGGER_PREFIX}.{component}")
    existing = next(
        (h.formatter for h in logger.handlers if isinstance(h.formatter, JsonFormatter)),
        None,
    )
    if existing is not None:
        existing.bind(**context)
        return logger

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter(component, context))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)
    logger.propagate = False
    return logger


def log(logger: logging.Logger, level: int, event: str, **fields: Any) -> None:
    logger.log(level, event, extra={_EXTRA_ATTR: fields})


def log_exception(logger: logging.Logger, event: str, **fields: Any) -> None:
    """Error-level :func:`log` that carries the active traceback."""

    logger.error(event, exc_info=True, extra={_EXTRA_ATTR: fields})
