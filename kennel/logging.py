import logging
import re
import sys
from typing import Any

import structlog

from kennel.config import get_settings

REDACTED = "[REDACTED]"

_EMAIL_RE = re.compile(r"[a-zA-Z0-9_.+-]+@[a-zA-Z0-9-]+\.[a-zA-Z0-9-.]+")
_SENSITIVE_KEYS = {
    "password",
    "token",
    "secret",
    "authorization",
    "signature",
    "api_key",
    "override_token",
    "medical_notes",
    "vaccinations",
    "phone",
    "address",
    "email",
}
_SENSITIVE_SUFFIXES = ("_token", "_secret", "_password", "_key")


def _is_sensitive_key(key: Any) -> bool:
    key_norm = str(key).lower().strip().replace("-", "_")
    return key_norm in _SENSITIVE_KEYS or key_norm.endswith(_SENSITIVE_SUFFIXES)


def _redact(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            k: (REDACTED if _is_sensitive_key(k) else _redact(v))
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [_redact(item) for item in value]
    if isinstance(value, str):
        return _EMAIL_RE.sub("[EMAIL_REDACTED]", value)
    return value


def pii_redactor(
    _logger: Any, _method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Strip tokens, secrets and PHI from every log event before rendering."""
    redacted = _redact(event_dict)
    return redacted if isinstance(redacted, dict) else {}


def setup_logging() -> None:
    settings = get_settings()

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        pii_redactor,
    ]

    if settings.DEBUG:
        processors.append(structlog.dev.ConsoleRenderer())
        min_level = logging.DEBUG
    else:
        processors.append(structlog.processors.JSONRenderer())
        min_level = logging.getLevelName(settings.LOG_LEVEL.upper())
        if not isinstance(min_level, int):
            min_level = logging.INFO

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(min_level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )
