"""
Error taxonomy for the access core.

Each error carries its HTTP status so the API layer can render it without
a lookup table. Services raise these; the CRUD factory and the token codec
never do (they return structured results instead).
"""
from typing import Any, Dict, Optional

# One message for every consume-path token failure. Invalid signature,
# expiry and reuse must be indistinguishable to the caller.
GENERIC_TOKEN_ERROR = "Override token is invalid, expired, or already used"


class KennelError(Exception):
    """Base exception for all expected domain failures."""

    def __init__(
        self,
        message: str,
        code: str = "internal_error",
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}


class AuthenticationRequired(KennelError):
    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message, code="unauthorized", status_code=401)


class AuthorizationDenied(KennelError):
    def __init__(self, message: str = "Insufficient permissions"):
        super().__init__(message, code="forbidden", status_code=403)


class MfaRequired(KennelError):
    """Session is valid but its MFA verification is missing or stale."""

    def __init__(self, message: str = "Recent MFA verification required"):
        super().__init__(message, code="mfa_required", status_code=403)


class TokenInvalid(KennelError):
    def __init__(self, message: str = GENERIC_TOKEN_ERROR):
        super().__init__(message, code="token_invalid", status_code=400)


class TokenAlreadyConsumed(KennelError):
    def __init__(self, message: str = GENERIC_TOKEN_ERROR):
        # Same code as TokenInvalid: callers must not tell them apart.
        super().__init__(message, code="token_invalid", status_code=400)


class ValidationError(KennelError):
    def __init__(self, message: str = "Invalid input data", fields: Optional[list] = None):
        super().__init__(
            message,
            code="validation_error",
            status_code=400,
            details={"fields": fields or []},
        )


class NotFound(KennelError):
    def __init__(self, message: str = "Not found"):
        super().__init__(message, code="not_found", status_code=404)
