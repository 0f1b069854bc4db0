"""
Generic CRUD engine enforcing entity access policies.

Every operation goes: authorize -> scope -> persist -> audit. Expected
failures (denied, not found, invalid payload) come back as a CrudResult
with success=False; only infrastructure errors propagate.
"""
import math
from dataclasses import dataclass, field as dc_field
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Type

import structlog
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import func, inspect, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session as DbSession

from kennel.clock import from_iso, utcnow
from kennel.config import Settings
from kennel.errors import KennelError
from kennel.models.enums import AuditAction, CrudVerb, EntityType
from kennel.services.audit import AuditLogger
from kennel.services.metrics import KennelMetrics
from kennel.services.overrides import OverrideService
from kennel.services.policies import EntityPolicy, PolicyResult
from kennel.services.redact import redact
from kennel.services.session import AuthSession

logger = structlog.get_logger()

DEFAULT_AUDIT_ACTIONS: Dict[CrudVerb, AuditAction] = {
    CrudVerb.CREATE: AuditAction.CREATE,
    CrudVerb.UPDATE: AuditAction.UPDATE,
    CrudVerb.DELETE: AuditAction.DELETE,
}


@dataclass
class CrudResult:
    success: bool
    data: Any = None
    error: Optional[str] = None
    code: Optional[str] = None
    details: Dict[str, Any] = dc_field(default_factory=dict)

    @classmethod
    def ok(cls, data: Any = None) -> "CrudResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, code: str, error: str, details: Optional[Dict[str, Any]] = None) -> "CrudResult":
        return cls(success=False, error=error, code=code, details=details or {})


def row_to_dict(row: Any) -> Dict[str, Any]:
    """Column values of an ORM row, keyed by attribute name."""
    mapper = inspect(row).mapper
    return {attr.key: getattr(row, attr.key) for attr in mapper.column_attrs}


def _coerce_filter(column: Any, value: Any) -> Any:
    """Convert a query-string filter value to the column's Python type."""
    if not isinstance(value, str):
        return value
    try:
        python_type = column.type.python_type
    except NotImplementedError:
        return value
    if python_type is bool:
        lowered = value.strip().lower()
        if lowered not in ("true", "false", "1", "0"):
            raise ValueError(value)
        return lowered in ("true", "1")
    if python_type is datetime:
        return from_iso(value)
    if python_type is str:
        return value
    return python_type(value)


def _validation_fields(exc: PydanticValidationError) -> List[Dict[str, str]]:
    return [
        {"field": ".".join(str(part) for part in err["loc"]), "message": err["msg"]}
        for err in exc.errors()
    ]


class CrudFactory:
    """
    One engine per entity type.

    Row scope from the policy is applied to every lookup, so a caller that
    omits filters never widens what it can see; a row outside scope is
    reported as not found rather than forbidden.
    """

    def __init__(
        self,
        db: DbSession,
        entity_type: EntityType,
        policy: EntityPolicy,
        settings: Settings,
        create_schema: Optional[Type[BaseModel]] = None,
        update_schema: Optional[Type[BaseModel]] = None,
        redact_fields: Iterable[str] = (),
        audit_actions: Optional[Mapping[CrudVerb, AuditAction]] = None,
        overrides: Optional[OverrideService] = None,
        metrics: Optional[KennelMetrics] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.entity_type = EntityType(entity_type)
        self.policy = policy
        self.model = policy.model
        self.settings = settings
        self.create_schema = create_schema
        self.update_schema = update_schema
        self.redact_fields = tuple(redact_fields)
        self.audit_actions = dict(DEFAULT_AUDIT_ACTIONS, **(audit_actions or {}))
        self.overrides = overrides
        self.metrics = metrics
        self.audit = AuditLogger(db, clock)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _target(self, entity_id: str) -> str:
        return f"{self.entity_type.value}:{entity_id}"

    def _count(self, verb: CrudVerb, outcome: str) -> None:
        if self.metrics:
            self.metrics.crud_operations.labels(
                entity=self.entity_type.value, verb=verb.value, outcome=outcome
            ).inc()

    def _snapshot(self, data: Mapping[str, Any]) -> Dict[str, Any]:
        return redact(data, extra_fields=self.redact_fields)

    def _denied(self, session: AuthSession, verb: CrudVerb, result: PolicyResult,
                entity_id: Optional[str] = None) -> CrudResult:
        self._count(verb, "denied")
        logger.info(
            "crud_denied",
            entity=self.entity_type.value,
            verb=verb.value,
            actor_id=session.user_id,
            role=session.role.value,
        )
        if self.settings.AUDIT_DENIALS:
            self.audit.record(
                actor_id=session.user_id,
                action=AuditAction.ACCESS_DENIED,
                target=self._target(entity_id or "*"),
                target_id=entity_id,
                meta={"verb": verb.value, "reason": result.reason},
            )
            self.db.commit()
        details = {}
        if result.requires_override and result.override_scope is not None:
            details["overrideScope"] = result.override_scope.value
        return CrudResult.fail("forbidden", result.reason or "Insufficient permissions", details)

    def _not_found(self, verb: CrudVerb) -> CrudResult:
        self._count(verb, "not_found")
        return CrudResult.fail("not_found", "Entity not found")

    def _invalid(self, verb: CrudVerb, fields: List[Dict[str, str]], message: str = "Invalid input data") -> CrudResult:
        self._count(verb, "invalid")
        return CrudResult.fail("validation_error", message, {"fields": fields})

    def _validate(self, schema: Optional[Type[BaseModel]], data: Any, partial: bool) -> Dict[str, Any]:
        if schema is None:
            return dict(data)
        if isinstance(data, schema):
            model = data
        else:
            model = schema.model_validate(data)
        if partial:
            return model.model_dump(exclude_unset=True)
        # Unset optionals stay out so column defaults apply
        return model.model_dump(exclude_none=True)

    def _column_problems(self, values: Mapping[str, Any], partial: bool) -> List[Dict[str, str]]:
        """Empty NOT NULL columns and references to rows that do not exist."""
        problems = []
        for attr in inspect(self.model).column_attrs:
            column = attr.columns[0]
            if column.primary_key:
                continue
            value = values.get(attr.key)
            if value is None:
                if column.nullable:
                    continue
                if partial and attr.key in values:
                    problems.append({"field": attr.key, "message": "Field cannot be null"})
                elif not partial and column.default is None and column.server_default is None:
                    problems.append({"field": attr.key, "message": "Field required"})
                continue
            for foreign_key in column.foreign_keys:
                target = foreign_key.column
                if self.db.execute(select(target).where(target == value)).first() is None:
                    problems.append({"field": attr.key, "message": "Referenced record does not exist"})
        return problems

    def _scoped_query(self, session: AuthSession):
        query = select(self.model)
        clause = self.policy.scope(session)
        if clause is not None:
            query = query.where(clause)
        return query

    def _load(self, session: AuthSession, entity_id: str):
        query = self._scoped_query(session).where(self.model.id == entity_id)
        return self.db.execute(query).scalars().first()

    def _authorize_mutation(
        self,
        session: AuthSession,
        verb: CrudVerb,
        result: PolicyResult,
        entity_id: str,
        override_token: Optional[str],
    ):
        """
        Returns (override_event, failure). A policy that asks for an override
        is satisfied by spending a matching token in this transaction.
        """
        if result.allowed:
            return None, None
        if not (result.requires_override and override_token and self.overrides):
            return None, self._denied(session, verb, result, entity_id)
        try:
            event = self.overrides.redeem(
                session,
                override_token,
                scope=result.override_scope,
                entity_type=self.entity_type.value,
                entity_id=entity_id,
                reason=f"Policy override for {self.entity_type.value} {verb.value}",
            )
        except KennelError as exc:
            self._count(verb, "denied")
            return None, CrudResult.fail(exc.code, exc.message)
        return event, None

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------
    def list(
        self,
        session: AuthSession,
        filters: Optional[Mapping[str, Any]] = None,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> CrudResult:
        permission = self.policy.can_perform(session, CrudVerb.LIST)
        if not permission.allowed:
            return self._denied(session, CrudVerb.LIST, permission)

        page = max(int(page or 1), 1)
        limit = int(limit or self.settings.CRUD_DEFAULT_PAGE_SIZE)
        limit = min(max(limit, 1), self.settings.CRUD_MAX_PAGE_SIZE)

        query = self._scoped_query(session)
        columns = {attr.key: attr.columns[0] for attr in inspect(self.model).column_attrs}
        problems = []
        for key, value in (filters or {}).items():
            if key not in columns:
                problems.append({"field": key, "message": "unknown filter field"})
                continue
            try:
                value = _coerce_filter(columns[key], value)
            except (TypeError, ValueError):
                problems.append({"field": key, "message": "invalid filter value"})
                continue
            query = query.where(getattr(self.model, key) == value)
        if problems:
            return self._invalid(CrudVerb.LIST, problems, "Invalid filter")

        total = self.db.execute(select(func.count()).select_from(query.subquery())).scalar_one()
        rows = self.db.execute(
            query.order_by(self.model.created_at.desc(), self.model.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).scalars().all()

        self._count(CrudVerb.LIST, "ok")
        return CrudResult.ok({
            "items": [row_to_dict(row) for row in rows],
            "page": page,
            "limit": limit,
            "total": total,
            "total_pages": math.ceil(total / limit) if total else 0,
        })

    def read(self, session: AuthSession, entity_id: str) -> CrudResult:
        row = self._load(session, entity_id)
        if row is None:
            return self._not_found(CrudVerb.READ)

        permission = self.policy.can_perform(session, CrudVerb.READ, row=row)
        if not permission.allowed:
            return self._denied(session, CrudVerb.READ, permission, entity_id)

        self._count(CrudVerb.READ, "ok")
        return CrudResult.ok(row_to_dict(row))

    def create(self, session: AuthSession, data: Any, override_token: Optional[str] = None) -> CrudResult:
        try:
            values = self._validate(self.create_schema, data, partial=False)
        except PydanticValidationError as exc:
            return self._invalid(CrudVerb.CREATE, _validation_fields(exc))

        values = self.policy.prepare_create(session, values)
        permission = self.policy.can_perform(session, CrudVerb.CREATE, data=values)
        # Nothing exists yet to bind an override token to, so create never redeems one.
        if not permission.allowed:
            return self._denied(session, CrudVerb.CREATE, permission)
        problems = self._column_problems(values, partial=False)
        if problems:
            return self._invalid(CrudVerb.CREATE, problems)

        try:
            row = self.model(**values)
            self.db.add(row)
            self.db.flush()
            self.audit.record(
                actor_id=session.user_id,
                action=self.audit_actions[CrudVerb.CREATE],
                target=self._target(row.id),
                target_id=row.id,
                meta={"action": "create", "data": self._snapshot(values)},
            )
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            return self._invalid(CrudVerb.CREATE, [], "Conflicts with an existing record")
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(row)
        self._count(CrudVerb.CREATE, "ok")
        return CrudResult.ok(row_to_dict(row))

    def update(
        self,
        session: AuthSession,
        entity_id: str,
        data: Any,
        override_token: Optional[str] = None,
    ) -> CrudResult:
        row = self._load(session, entity_id)
        if row is None:
            return self._not_found(CrudVerb.UPDATE)

        try:
            changes = self._validate(self.update_schema, data, partial=True)
        except PydanticValidationError as exc:
            return self._invalid(CrudVerb.UPDATE, _validation_fields(exc))
        if not changes:
            return self._invalid(CrudVerb.UPDATE, [], "No fields to update")

        permission = self.policy.can_perform(session, CrudVerb.UPDATE, row=row, data=changes)
        # Checked before any override token is spent.
        if permission.allowed or permission.requires_override:
            problems = self._column_problems(changes, partial=True)
            check_merged = getattr(self.update_schema, "check_merged", None)
            if check_merged is not None:
                problems.extend(check_merged(row_to_dict(row), changes))
            if problems:
                return self._invalid(CrudVerb.UPDATE, problems)

        event, failure = self._authorize_mutation(
            session, CrudVerb.UPDATE, permission, entity_id, override_token
        )
        if failure is not None:
            return failure

        try:
            previous = row_to_dict(row)
            for key, value in changes.items():
                setattr(row, key, value)
            self.db.flush()
            meta = {
                "action": "update",
                "changes": self._snapshot(changes),
                "previous": self._snapshot({k: previous[k] for k in changes if k in previous}),
            }
            if event is not None:
                meta["overrideEventId"] = event.id
            self.audit.record(
                actor_id=session.user_id,
                action=self.audit_actions[CrudVerb.UPDATE],
                target=self._target(entity_id),
                target_id=entity_id,
                meta=meta,
            )
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            return self._invalid(CrudVerb.UPDATE, [], "Conflicts with an existing record")
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(row)
        self._count(CrudVerb.UPDATE, "ok")
        return CrudResult.ok(row_to_dict(row))

    def delete(self, session: AuthSession, entity_id: str, override_token: Optional[str] = None) -> CrudResult:
        row = self._load(session, entity_id)
        if row is None:
            return self._not_found(CrudVerb.DELETE)

        permission = self.policy.can_perform(session, CrudVerb.DELETE, row=row)
        event, failure = self._authorize_mutation(
            session, CrudVerb.DELETE, permission, entity_id, override_token
        )
        if failure is not None:
            return failure

        try:
            snapshot = self._snapshot(row_to_dict(row))
            self.db.delete(row)
            self.db.flush()
            meta = {"action": "delete", "deleted": snapshot}
            if event is not None:
                meta["overrideEventId"] = event.id
            self.audit.record(
                actor_id=session.user_id,
                action=self.audit_actions[CrudVerb.DELETE],
                target=self._target(entity_id),
                target_id=entity_id,
                meta=meta,
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self._count(CrudVerb.DELETE, "ok")
        return CrudResult.ok({"id": entity_id})
