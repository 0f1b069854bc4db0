"""
MFA recency checks.

Two windows gate privileged work: "fresh" (minutes) for high-security
actions such as issuing override tokens, and "recent" (hours) for every
other privileged action. Enrollment and verification belong to the
identity provider; this module only compares timestamps.
"""
from datetime import datetime, timedelta
from typing import Optional

from kennel.clock import utcnow

FRESH_MFA_MINUTES = 5
RECENT_MFA_HOURS = 12

HIGH_SECURITY_ACTIONS = frozenset({
    "issue_override_token",
    "revoke_override_token",
    "access_security_settings",
    "modify_user_roles",
    "process_refund",
})


def is_mfa_verified_recently(
    verified_at: Optional[datetime],
    minutes: float,
    now: Optional[datetime] = None,
) -> bool:
    if verified_at is None:
        return False
    now = now or utcnow()
    return now - verified_at <= timedelta(minutes=minutes)


def requires_fresh_mfa(
    verified_at: Optional[datetime],
    action: str,
    now: Optional[datetime] = None,
    fresh_minutes: float = FRESH_MFA_MINUTES,
    recent_hours: float = RECENT_MFA_HOURS,
) -> bool:
    """True when the user must re-verify MFA before performing action."""
    if action in HIGH_SECURITY_ACTIONS:
        return not is_mfa_verified_recently(verified_at, fresh_minutes, now)
    return not is_mfa_verified_recently(verified_at, recent_hours * 60, now)
