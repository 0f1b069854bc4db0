"""
Self-contained, signed override tokens.

Wire format: base64url(JSON{nonce, scope, entityType, entityId, issuedTo,
issuedBy, expiresAt, signature}) where signature is the hex HMAC-SHA256 of
the canonical JSON of every other field. Nothing but the keyed hash of the
token is ever persisted.
"""
import base64
import binascii
import hashlib
import hmac
import json
import secrets
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Tuple

from kennel.clock import from_iso, to_iso, utcnow

PAYLOAD_FIELDS = ("nonce", "scope", "entityType", "entityId", "issuedTo", "issuedBy", "expiresAt")


@dataclass(frozen=True)
class TokenVerification:
    valid: bool
    payload: Optional[Dict[str, Any]] = None


def _canonical(payload: Dict[str, Any]) -> bytes:
    return json.dumps(payload, sort_keys=True, separators=(",", ":")).encode()


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64decode(text: str) -> bytes:
    padded = text + "=" * (-len(text) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii"))


class OverrideTokenCodec:
    """Issues and verifies override tokens with a single HMAC secret."""

    def __init__(self, secret: str, clock: Callable[[], datetime] = utcnow):
        if not secret:
            raise ValueError("Override HMAC secret must not be empty")
        self._key = secret.encode()
        self._clock = clock

    def _sign(self, payload: Dict[str, Any]) -> str:
        return hmac.new(self._key, _canonical(payload), hashlib.sha256).hexdigest()

    def issue(
        self,
        issued_by: str,
        issued_to: str,
        scope: str,
        entity_type: str,
        entity_id: str,
        expires_at: datetime,
    ) -> Tuple[str, str]:
        """Return (opaque token, nonce)."""
        nonce = secrets.token_hex(16)
        payload = {
            "nonce": nonce,
            "scope": str(getattr(scope, "value", scope)),
            "entityType": str(getattr(entity_type, "value", entity_type)),
            "entityId": str(entity_id),
            "issuedTo": issued_to,
            "issuedBy": issued_by,
            "expiresAt": to_iso(expires_at),
        }
        body = dict(payload, signature=self._sign(payload))
        return _b64encode(json.dumps(body, separators=(",", ":")).encode()), nonce

    def verify(self, token: Any) -> TokenVerification:
        """
        Check signature and expiry. Never raises.

        Every failure returns the same TokenVerification(valid=False) so the
        caller cannot learn which check failed.
        """
        try:
            raw = _b64decode(token)
            decoded = json.loads(raw)
        except (TypeError, ValueError, AttributeError, UnicodeError, RecursionError, binascii.Error):
            return TokenVerification(valid=False)
        if not isinstance(decoded, dict):
            return TokenVerification(valid=False)
        # Only the exact bytes we emit are accepted; stray padding bits or
        # re-spaced JSON would otherwise decode to the same payload.
        if _b64encode(raw) != token or json.dumps(decoded, separators=(",", ":")).encode() != raw:
            return TokenVerification(valid=False)

        signature = decoded.pop("signature", None)
        if not isinstance(signature, str) or set(decoded) != set(PAYLOAD_FIELDS):
            return TokenVerification(valid=False)
        if not hmac.compare_digest(signature.encode(), self._sign(decoded).encode()):
            return TokenVerification(valid=False)

        try:
            expires_at = from_iso(decoded["expiresAt"])
        except (TypeError, ValueError):
            return TokenVerification(valid=False)
        if self._clock() >= expires_at:
            return TokenVerification(valid=False)

        return TokenVerification(valid=True, payload=decoded)

    def hash(self, token: str) -> str:
        return hmac.new(self._key, token.encode(), hashlib.sha256).hexdigest()
