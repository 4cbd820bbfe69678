from .audit import AuditLog, now_ms
from .logging import build_log_context, get_logger, log_event
from .metrics import Metrics

__all__ = ["AuditLog", "Metrics", "build_log_context", "get_logger", "log_event", "now_ms"]
