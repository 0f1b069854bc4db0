"""
Redaction of PHI and secrets from snapshots written to the audit log.

Identifiers are preserved so audit rows stay joinable; everything that
looks like health data, contact data or a credential becomes [REDACTED].
"""
import re
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Iterable, Mapping

REDACTED = "[REDACTED]"

PHI_FIELDS = frozenset({
    "medical_notes",
    "vaccinations",
    "phone",
    "address",
    "email",
    "ssn",
    "date_of_birth",
    "emergency_contact",
    "veterinarian_info",
    "medications",
    "allergies",
    "behavioral_notes",
    "special_instructions",
})

SENSITIVE_PATTERNS = (
    re.compile(r"password", re.I),
    re.compile(r"secret", re.I),
    re.compile(r"token", re.I),
    re.compile(r"key", re.I),
    re.compile(r"auth", re.I),
    re.compile(r"credential", re.I),
)


def _is_id(key: str) -> bool:
    return key == "id" or key.endswith("_id") or key.endswith("Id")


def _jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def redact(
    data: Mapping[str, Any],
    extra_fields: Iterable[str] = (),
    preserve_ids: bool = True,
) -> Dict[str, Any]:
    """Return a JSON-safe copy of data with sensitive values replaced."""
    extra = frozenset(extra_fields)
    result: Dict[str, Any] = {}
    for key, value in data.items():
        if preserve_ids and _is_id(key):
            result[key] = _jsonable(value)
        elif key in PHI_FIELDS or key in extra:
            result[key] = REDACTED
        elif any(pattern.search(key) for pattern in SENSITIVE_PATTERNS):
            result[key] = REDACTED
        elif isinstance(value, Mapping):
            result[key] = redact(value, extra, preserve_ids)
        elif isinstance(value, (list, tuple)):
            result[key] = [
                redact(item, extra, preserve_ids) if isinstance(item, Mapping) else _jsonable(item)
                for item in value
            ]
        else:
            result[key] = _jsonable(value)
    return result
