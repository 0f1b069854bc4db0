"""Append-only audit writer."""
from datetime import datetime
from typing import Any, Callable, Dict, Optional

import structlog
from sqlalchemy.orm import Session as DbSession

from kennel.clock import utcnow
from kennel.models.audit import AuditLog
from kennel.models.enums import AuditAction

logger = structlog.get_logger()


class AuditLogger:
    """
    Adds AuditLog rows to the caller's unit of work.

    record() never commits: the audit row must land in the same transaction
    as the state change it describes, so the caller commits both together.
    There is no update or delete here.
    """

    def __init__(self, db: DbSession, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self._clock = clock

    def record(
        self,
        actor_id: str,
        action: AuditAction,
        target: str,
        target_id: Optional[str] = None,
        meta: Optional[Dict[str, Any]] = None,
    ) -> AuditLog:
        entry = AuditLog(
            actor_id=actor_id,
            action=action,
            target=target,
            target_id=target_id,
            meta=meta or {},
            timestamp=self._clock(),
        )
        self.db.add(entry)
        logger.info(
            "audit_recorded",
            actor_id=actor_id,
            audit_action=action.value,
            target=target,
        )
        return entry
