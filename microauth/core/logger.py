"""
Centralized logging module for the microauth services.

Follows Layer 6 rules:
- Structured logging suitable for Grafana/Loki/ELK
- Appropriate log levels (info, warning, error)
- NEVER logs passwords, client secrets, raw tokens or full request bodies
- Security-sensitive actions emit structured logs with user_id, tenant_id, action, result, timestamp
"""
import json
import logging
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

# Set per request by the request-id middleware in main.py
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

logger = logging.getLogger("microauth")
logger.setLevel(logging.INFO)

_handler = logging.StreamHandler()
_handler.setLevel(logging.DEBUG)

_EXTRA_FIELDS = ("user_id", "tenant_id", "client_id", "action", "result", "meta")


class JSONFormatter(logging.Formatter):
    """Formatter that outputs structured JSON logs."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        request_id = request_id_var.get()
        if request_id:
            log_data["request_id"] = request_id

        for field in _EXTRA_FIELDS:
            if hasattr(record, field):
                log_data[field] = getattr(record, field)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


_handler.setFormatter(JSONFormatter())
logger.addHandler(_handler)

# Prevent duplicate logs
logger.propagate = False


def configure_logging(level: str) -> None:
    """Apply the configured level to the service logger tree."""
    logger.setLevel(level.upper())


def get_logger(name: str) -> logging.Logger:
    """Child logger of the service logger, e.g. ``get_logger(__name__)``."""
    if name == "microauth" or name.startswith("microauth."):
        return logging.getLogger(name)
    return logger.getChild(name)


def log_security_event(
    action: str,
    result: str,
    user_id: Optional[Any] = None,
    tenant_id: Optional[Any] = None,
    meta: Optional[Dict[str, Any]] = None,
    level: str = "info",
) -> None:
    """
    Log security-sensitive actions (login, tenant switch, token issuance, revocation).

    Emits structured logs with:
    - user_id, tenant_id, action, result, timestamp
    - Additional metadata in meta dict

    Args:
        action: Action name (e.g., "login", "tenant_switch", "token_refresh")
        result: Result status (e.g., "success", "failure", "denied")
        user_id: User ID (optional)
        tenant_id: Tenant ID (optional)
        meta: Additional metadata dict (optional); never put secrets here
        level: Log level ("info", "warning", "error")
    """
    log_method = getattr(logger, level.lower(), logger.info)
    extra: Dict[str, Any] = {
        "action": action,
        "result": result,
    }
    if user_id is not None:
        extra["user_id"] = user_id
    if tenant_id is not None:
        extra["tenant_id"] = tenant_id
    if meta:
        extra["meta"] = meta

    log_method("Security event", extra=extra)
