"""
Override (step-up authorization) flow.

This is the only state machine in the core:

    ISSUED --consume--> CONSUMED
       |
       +-- derived: EXPIRED (now > expires_at, never used)
       +-- derived: REVOKED (revoked_at set, never used)

Issuing requires OWNER/ADMIN with fresh MFA. Consuming requires being the
user the token was issued to. Consumption is at-most-once: the claim is a
single conditional UPDATE guarded by used_at IS NULL, so of several
concurrent presentations of the same token exactly one sees rowcount == 1.
"""
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

import structlog
from sqlalchemy import update
from sqlalchemy.orm import Session as DbSession

from kennel.clock import to_iso, utcnow
from kennel.config import Settings
from kennel.errors import (
    AuthorizationDenied,
    MfaRequired,
    NotFound,
    TokenAlreadyConsumed,
    TokenInvalid,
    ValidationError,
)
from kennel.models.audit import ApprovalToken, OverrideEvent
from kennel.models.domain import User
from kennel.models.enums import ApprovalState, AuditAction, OverrideScope
from kennel.services.audit import AuditLogger
from kennel.services.metrics import KennelMetrics
from kennel.services.mfa import requires_fresh_mfa
from kennel.services.override_tokens import OverrideTokenCodec
from kennel.services.session import AuthSession

logger = structlog.get_logger()


@dataclass(frozen=True)
class IssuedOverride:
    token: str
    expires_at: datetime
    scope: OverrideScope
    entity_type: str
    entity_id: str


@dataclass(frozen=True)
class ConsumedOverride:
    override_session_id: str
    expires_at: datetime
    scope: OverrideScope
    entity_type: str
    entity_id: str
    override_event_id: str


def state_of(approval: ApprovalToken, now: datetime) -> ApprovalState:
    """Derive the lifecycle state at now; only used_at and revoked_at are stored."""
    if approval.used_at is not None:
        return ApprovalState.CONSUMED
    if approval.revoked_at is not None:
        return ApprovalState.REVOKED
    if now > approval.expires_at:
        return ApprovalState.EXPIRED
    return ApprovalState.ISSUED


class OverrideService:
    """Issues, consumes, redeems and revokes override tokens."""

    def __init__(
        self,
        db: DbSession,
        codec: OverrideTokenCodec,
        settings: Settings,
        clock: Callable[[], datetime] = utcnow,
        metrics: Optional[KennelMetrics] = None,
    ):
        self.db = db
        self.codec = codec
        self.settings = settings
        self._clock = clock
        self.metrics = metrics
        self.audit = AuditLogger(db, clock)

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------
    def _require_privileged_with_fresh_mfa(self, actor: AuthSession, action: str) -> None:
        if not actor.is_privileged:
            raise AuthorizationDenied("Insufficient permissions")

        user = self.db.get(User, actor.user_id)
        verified_at = user.mfa_verified_at if user else None
        if requires_fresh_mfa(
            verified_at,
            action,
            now=self._clock(),
            fresh_minutes=self.settings.MFA_FRESH_MINUTES,
            recent_hours=self.settings.MFA_RECENT_HOURS,
        ):
            raise MfaRequired()

    def _fail(self, stage: str, error: Exception) -> None:
        if self.metrics:
            self.metrics.override_failures.labels(stage=stage).inc()
        logger.info("override_token_rejected", stage=stage)
        raise error

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------
    def issue(
        self,
        actor: AuthSession,
        issued_to_user_id: str,
        scope: OverrideScope,
        entity_type: str,
        entity_id: str,
        reason: str,
        expires_in_minutes: int = 15,
    ) -> IssuedOverride:
        """
        Mint a token for issued_to_user_id and persist only its hash.

        The returned token must reach the recipient out of band; it cannot
        be recovered from the database afterwards.
        """
        self._require_privileged_with_fresh_mfa(actor, "issue_override_token")

        if not 1 <= expires_in_minutes <= self.settings.OVERRIDE_MAX_MINUTES:
            raise ValidationError(
                "Invalid expiry window",
                fields=[{
                    "field": "expiresInMinutes",
                    "message": f"must be between 1 and {self.settings.OVERRIDE_MAX_MINUTES}",
                }],
            )
        if not reason or not reason.strip():
            raise ValidationError("Reason is required", fields=[{"field": "reason", "message": "required"}])

        scope = OverrideScope(scope)
        target = self.db.get(User, issued_to_user_id)
        if target is None or not target.is_active:
            raise NotFound("Target user not found")

        now = self._clock()
        expires_at = now + timedelta(minutes=expires_in_minutes)
        token, nonce = self.codec.issue(
            issued_by=actor.user_id,
            issued_to=issued_to_user_id,
            scope=scope.value,
            entity_type=entity_type,
            entity_id=entity_id,
            expires_at=expires_at,
        )

        try:
            approval = ApprovalToken(
                token_hash=self.codec.hash(token),
                nonce=nonce,
                scope=scope,
                expires_at=expires_at,
                issued_by_admin_id=actor.user_id,
                issued_to_user_id=issued_to_user_id,
                meta={
                    "entityType": entity_type,
                    "entityId": entity_id,
                    "reason": reason,
                    "nonce": nonce,
                },
                created_at=now,
            )
            self.db.add(approval)
            self.db.flush()
            self.audit.record(
                actor_id=actor.user_id,
                action=AuditAction.APPROVAL,
                target=f"override_token:{scope.value}:{entity_type}:{entity_id}",
                target_id=approval.id,
                meta={
                    "action": "issue_override_token",
                    "issuedTo": issued_to_user_id,
                    "scope": scope.value,
                    "entityType": entity_type,
                    "entityId": entity_id,
                    "reason": reason,
                    "expiresAt": to_iso(expires_at),
                },
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        if self.metrics:
            self.metrics.overrides_issued.labels(scope=scope.value).inc()
        logger.info(
            "override_token_issued",
            approval_id=approval.id,
            issued_by=actor.user_id,
            issued_to=issued_to_user_id,
            scope=scope.value,
            entity_type=entity_type,
        )
        return IssuedOverride(
            token=token,
            expires_at=expires_at,
            scope=scope,
            entity_type=entity_type,
            entity_id=entity_id,
        )

    def _verify_for(self, actor: AuthSession, token: str) -> Dict[str, Any]:
        verification = self.codec.verify(token)
        if not verification.valid or verification.payload is None:
            self._fail("verify", TokenInvalid())
        payload = verification.payload
        if payload["issuedTo"] != actor.user_id:
            self._fail("recipient", AuthorizationDenied("Token not issued to this user"))
        return payload

    def _claim(self, actor: AuthSession, token: str, payload: Dict[str, Any], now: datetime) -> ApprovalToken:
        """
        Atomically flip used_at from NULL to now.

        Expired, revoked, reused and unknown tokens all end up here with
        rowcount 0 and are reported identically.
        """
        result = self.db.execute(
            update(ApprovalToken)
            .where(
                ApprovalToken.nonce == payload["nonce"],
                ApprovalToken.token_hash == self.codec.hash(token),
                ApprovalToken.issued_to_user_id == actor.user_id,
                ApprovalToken.used_at.is_(None),
                ApprovalToken.revoked_at.is_(None),
                ApprovalToken.expires_at > now,
            )
            .values(used_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db.rollback()
            self._fail("claim", TokenAlreadyConsumed())

        approval = (
            self.db.query(ApprovalToken)
            .filter(ApprovalToken.nonce == payload["nonce"])
            .populate_existing()
            .one()
        )
        return approval

    def _record_event(
        self,
        actor: AuthSession,
        approval: ApprovalToken,
        payload: Dict[str, Any],
        action: str,
        reason: Optional[str],
    ) -> OverrideEvent:
        event = OverrideEvent(
            actor_id=actor.user_id,
            action=action,
            entity_type=payload["entityType"],
            entity_id=payload["entityId"],
            scope=OverrideScope(payload["scope"]),
            reason=reason or (approval.meta or {}).get("reason") or "",
            approved_by_admin_id=payload["issuedBy"],
            meta={
                "tokenId": approval.id,
                "originalReason": (approval.meta or {}).get("reason"),
            },
            created_at=self._clock(),
        )
        self.db.add(event)
        self.db.flush()
        return event

    def consume(self, actor: AuthSession, token: str, reason: Optional[str] = None) -> ConsumedOverride:
        """
        Exchange a token for a short-lived override session.

        The override session id is bookkeeping for the caller; later
        requests are not cryptographically bound to it.
        """
        payload = self._verify_for(actor, token)
        now = self._clock()

        try:
            approval = self._claim(actor, token, payload, now)
            event = self._record_event(actor, approval, payload, "consume_override_token", reason)
            self.audit.record(
                actor_id=actor.user_id,
                action=AuditAction.OVERRIDE_TOKEN_CONSUMED,
                target=f"{payload['entityType']}:{payload['entityId']}",
                target_id=payload["entityId"],
                meta={
                    "action": "consume_override_token",
                    "scope": payload["scope"],
                    "entityType": payload["entityType"],
                    "entityId": payload["entityId"],
                    "reason": event.reason,
                    "overrideEventId": event.id,
                    "approvalTokenId": approval.id,
                },
            )
            self.db.commit()
        except (TokenAlreadyConsumed, AuthorizationDenied):
            raise
        except Exception:
            self.db.rollback()
            raise

        if self.metrics:
            self.metrics.overrides_consumed.labels(scope=payload["scope"]).inc()
        logger.info(
            "override_token_consumed",
            approval_id=approval.id,
            override_event_id=event.id,
            actor_id=actor.user_id,
            scope=payload["scope"],
        )
        return ConsumedOverride(
            override_session_id=f"override_{event.id}_{secrets.token_hex(8)}",
            expires_at=now + timedelta(minutes=self.settings.OVERRIDE_SESSION_MINUTES),
            scope=OverrideScope(payload["scope"]),
            entity_type=payload["entityType"],
            entity_id=payload["entityId"],
            override_event_id=event.id,
        )

    def redeem(
        self,
        actor: AuthSession,
        token: str,
        scope: OverrideScope,
        entity_type: str,
        entity_id: str,
        reason: str,
    ) -> OverrideEvent:
        """
        Spend a token inside the caller's transaction to authorize one
        mutation on one entity.

        Records the OverrideEvent but neither commits nor writes an audit
        row; the caller's own audit row references the returned event.
        """
        payload = self._verify_for(actor, token)
        if (
            payload["scope"] != OverrideScope(scope).value
            or payload["entityType"] != str(entity_type)
            or payload["entityId"] != str(entity_id)
        ):
            self._fail("binding", TokenInvalid())

        approval = self._claim(actor, token, payload, self._clock())
        event = self._record_event(actor, approval, payload, "redeem_override_token", reason)
        if self.metrics:
            self.metrics.overrides_consumed.labels(scope=payload["scope"]).inc()
        return event

    def revoke(self, actor: AuthSession, approval_id: str, reason: str) -> ApprovalToken:
        """Withdraw an unused token before it is presented."""
        self._require_privileged_with_fresh_mfa(actor, "revoke_override_token")

        approval = self.db.get(ApprovalToken, approval_id)
        if approval is None:
            raise NotFound("Override token not found")

        now = self._clock()
        result = self.db.execute(
            update(ApprovalToken)
            .where(
                ApprovalToken.id == approval_id,
                ApprovalToken.used_at.is_(None),
                ApprovalToken.revoked_at.is_(None),
            )
            .values(revoked_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db.rollback()
            raise ValidationError("Override token is no longer active")

        try:
            self.audit.record(
                actor_id=actor.user_id,
                action=AuditAction.REVOKE,
                target=f"override_token:{approval.scope.value}",
                target_id=approval.id,
                meta={"action": "revoke_override_token", "reason": reason},
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(approval)
        logger.info("override_token_revoked", approval_id=approval.id, actor_id=actor.user_id)
        return approval

    def list_tokens(self, actor: AuthSession, state: Optional[ApprovalState] = None) -> List[Dict[str, Any]]:
        """Admin view of issued tokens. The raw token is never available."""
        if not actor.is_privileged:
            raise AuthorizationDenied("Insufficient permissions")

        now = self._clock()
        rows = self.db.query(ApprovalToken).order_by(ApprovalToken.created_at.desc()).all()
        listing = []
        for row in rows:
            row_state = state_of(row, now)
            if state is not None and row_state != state:
                continue
            meta = row.meta or {}
            listing.append({
                "id": row.id,
                "scope": row.scope.value,
                "state": row_state.value,
                "entityType": meta.get("entityType"),
                "entityId": meta.get("entityId"),
                "reason": meta.get("reason"),
                "issuedByAdminId": row.issued_by_admin_id,
                "issuedToUserId": row.issued_to_user_id,
                "expiresAt": to_iso(row.expires_at),
                "usedAt": to_iso(row.used_at) if row.used_at else None,
                "revokedAt": to_iso(row.revoked_at) if row.revoked_at else None,
            })
        return listing
