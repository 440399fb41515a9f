"""
Logging Configuration

Structured logging setup with JSON output for production.

Nothing that reaches a log record may contain PHI, passwords, TOTP
secrets or codes. log_security_event() strips known-sensitive keys
before logging.
"""
import logging
import sys
from typing import Any, Dict
import json
from datetime import datetime

# Keys dropped from security event details
SENSITIVE_KEYS = frozenset({
    "password",
    "code",
    "secret",
    "backup_code",
    "backup_codes",
    "content",
    "token",
    "mfa_token",
})

_CONTEXT_FIELDS = ("tenant_id", "user_id", "request_id", "event_type", "security_event")


class JSONFormatter(logging.Formatter):
    """JSON log formatter for log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.utcnow().isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for field in _CONTEXT_FIELDS:
            if hasattr(record, field):
                log_data[field] = getattr(record, field)

        return json.dumps(log_data, default=str)


def setup_logging(log_level: str = "INFO", json_format: bool = False) -> None:
    """
    Configure application logging.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON format for structured logging

    NOTE: Call this once at application startup.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level.upper()))

    # Remove existing handlers to avoid duplicates
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)

    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        handler.setFormatter(formatter)

    root_logger.addHandler(handler)

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("passlib").setLevel(logging.ERROR)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance."""
    return logging.getLogger(name)


def scrub(details: Dict[str, Any]) -> Dict[str, Any]:
    """Drop sensitive keys from a details dict."""
    return {k: v for k, v in details.items() if k not in SENSITIVE_KEYS}


def log_security_event(event_type: str, details: Dict[str, Any], logger: logging.Logger) -> None:
    """
    Log security-related events.

    Event types:
    - failed_login: Failed password attempt
    - account_locked: Login lockout threshold reached
    - mfa_failed: Rejected TOTP or backup code
    - mfa_locked: MFA lockout threshold reached
    - mfa_reset: Admin wiped a user's MFA enrollment
    - tenant_isolation_violation: Attempted cross-tenant access
    - rate_limit_exceeded: Rate limit hit
    """
    log_data = {
        "security_event": True,
        "event_type": event_type,
        **scrub(details)
    }

    # LogRecord reserves some attribute names
    log_data.pop("message", None)
    log_data.pop("module", None)

    logger.warning(f"SECURITY EVENT: {event_type}", extra=log_data)
