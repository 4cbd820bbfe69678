from __future__ import annotations

import json
import logging
import os
import time
from enum import Enum
from typing import Any, Dict, Optional

_LOGGER_NAME = "ctgvault"

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def get_logger() -> logging.Logger:
    logger = logging.getLogger(_LOGGER_NAME)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(handler)
        logger.setLevel(_LEVELS.get(os.getenv("VAULT_LOG_LEVEL", "info").strip().lower(), logging.INFO))
        logger.propagate = True
    return logger


def build_log_context(**fields: Any) -> Dict[str, Any]:
    """
    Static fields attached to every event emitted with this context.
    """
    ctx: Dict[str, Any] = {"service": os.getenv("VAULT_SERVICE_NAME", "ctgvault").strip() or "ctgvault"}
    for k, v in fields.items():
        if v is not None:
            ctx[k] = v
    return ctx


def _jsonable(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_jsonable(v) for v in value]
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, Enum):
        return _jsonable(value.value)
    return str(value)


def log_event(
    event: str,
    *,
    ctx: Optional[Dict[str, Any]] = None,
    data: Optional[Dict[str, Any]] = None,
    level: str = "info",
) -> Dict[str, Any]:
    """
    Emit one structured JSON log line and return the record.
    """
    record: Dict[str, Any] = {"ts_ms": int(time.time() * 1000), "event": event}
    if ctx:
        record.update(ctx)
    if data:
        record["data"] = _jsonable(data)
    get_logger().log(_LEVELS.get(level, logging.INFO), json.dumps(record, sort_keys=True, default=str))
    return record
