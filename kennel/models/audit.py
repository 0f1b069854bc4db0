"""
Authorization and audit records.

These rows are owned by the persistence layer. Apart from the single
used_at (and revoked_at) transition on ApprovalToken they are never edited
or deleted.
"""
from sqlalchemy import Column, DateTime, Enum as SQLEnum, Integer, JSON, String

from kennel.clock import utcnow
from kennel.database import Base, new_id
from kennel.models.enums import AuditAction, OverrideScope


class ApprovalToken(Base):
    """
    Persisted half of an override token.

    The raw token is never stored - only its keyed hash and the nonce used
    to find it again on consumption.

    Lifecycle: created with used_at = NULL -> used_at set exactly once.
    """
    __tablename__ = "approval_tokens"

    id = Column(String(32), primary_key=True, default=new_id)
    token_hash = Column(String(64), nullable=False, unique=True)
    nonce = Column(String(32), nullable=False, unique=True, index=True)
    scope = Column(SQLEnum(OverrideScope), nullable=False)
    expires_at = Column(DateTime, nullable=False)
    issued_by_admin_id = Column(String(32), nullable=False)
    issued_to_user_id = Column(String(32), nullable=False, index=True)
    used_at = Column(DateTime, nullable=True)
    revoked_at = Column(DateTime, nullable=True)
    # "metadata" is reserved on declarative classes
    meta = Column("metadata", JSON, nullable=False, default=dict)  # entityType, entityId, reason, nonce

    created_at = Column(DateTime, nullable=False, default=utcnow)


class OverrideEvent(Base):
    """Immutable record of an override actually being exercised."""
    __tablename__ = "override_events"

    id = Column(String(32), primary_key=True, default=new_id)
    actor_id = Column(String(32), nullable=False, index=True)
    action = Column(String, nullable=False)
    entity_type = Column(String, nullable=False)
    entity_id = Column(String, nullable=False, index=True)
    scope = Column(SQLEnum(OverrideScope), nullable=False)
    reason = Column(String, nullable=False)
    approved_by_admin_id = Column(String(32), nullable=True)
    meta = Column("metadata", JSON, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)


class AuditLog(Base):
    """
    Append-only audit trail.

    Invariants:
    - Once written, never edited or deleted
    - One row per privileged state transition
    - meta never contains raw PHI (callers pass redacted snapshots)
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    actor_id = Column(String(32), nullable=False, index=True)
    action = Column(SQLEnum(AuditAction), nullable=False, index=True)
    target = Column(String, nullable=False)  # e.g. "pet:<id>", "override_token:REFUND:booking:<id>"
    target_id = Column(String, nullable=True, index=True)
    meta = Column(JSON, nullable=True)
    timestamp = Column(DateTime, nullable=False, default=utcnow, index=True)
