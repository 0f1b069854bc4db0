"""
Entity access policies.

One policy object per entity type, answering two questions:
- may this session perform this verb on this row (or payload)?
- which rows may this session see at all (row scope)?

Policies are pure and stateless. The base class denies everything, so an
entity only grants what its subclass spells out; a role that no branch
matches falls through to a denial.
"""
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

from sqlalchemy import select
from sqlalchemy.sql.elements import ColumnElement

from kennel.models.domain import Booking, CareLog, Kennel, Notification, Pet, User
from kennel.models.enums import CrudVerb, EntityType, OverrideScope, UserRole
from kennel.services.session import AuthSession


@dataclass(frozen=True)
class PolicyResult:
    allowed: bool
    reason: Optional[str] = None
    requires_override: bool = False
    override_scope: Optional[OverrideScope] = None


def allow() -> PolicyResult:
    return PolicyResult(allowed=True)


def deny(reason: str) -> PolicyResult:
    return PolicyResult(allowed=False, reason=reason)


def needs_override(reason: str, scope: OverrideScope) -> PolicyResult:
    return PolicyResult(allowed=False, reason=reason, requires_override=True, override_scope=scope)


def field(obj: Any, name: str) -> Any:
    """Read name from either a payload dict or an ORM row."""
    if obj is None:
        return None
    if isinstance(obj, Mapping):
        return obj.get(name)
    return getattr(obj, name, None)


def is_self(session: AuthSession, user_id: Any) -> bool:
    return user_id is not None and user_id == session.user_id


class EntityPolicy:
    """Deny-by-default base. Subclasses override only what they grant."""

    entity_type: EntityType
    model: Any

    def can_create(self, session: AuthSession, data: Mapping[str, Any]) -> PolicyResult:
        return deny("Insufficient permissions")

    def can_read(self, session: AuthSession, row: Any) -> PolicyResult:
        return deny("Insufficient permissions")

    def can_update(self, session: AuthSession, row: Any, data: Mapping[str, Any]) -> PolicyResult:
        return deny("Insufficient permissions")

    def can_delete(self, session: AuthSession, row: Any) -> PolicyResult:
        return deny("Insufficient permissions")

    def can_list(self, session: AuthSession) -> PolicyResult:
        return deny("Insufficient permissions")

    def scope(self, session: AuthSession) -> Optional[ColumnElement]:
        """Filter applied to every query for this session. None = all rows."""
        return None

    def prepare_create(self, session: AuthSession, data: Dict[str, Any]) -> Dict[str, Any]:
        """Fill ownership defaults before the create check runs."""
        return dict(data)

    def can_perform(
        self,
        session: AuthSession,
        verb: CrudVerb,
        row: Any = None,
        data: Optional[Mapping[str, Any]] = None,
    ) -> PolicyResult:
        if not isinstance(session.role, UserRole):
            return deny("Unknown role")
        data = data or {}
        if verb == CrudVerb.CREATE:
            return self.can_create(session, data)
        if verb == CrudVerb.READ:
            return self.can_read(session, row)
        if verb == CrudVerb.UPDATE:
            return self.can_update(session, row, data)
        if verb == CrudVerb.DELETE:
            return self.can_delete(session, row)
        if verb == CrudVerb.LIST:
            return self.can_list(session)
        return deny("Unknown operation")


class UserPolicy(EntityPolicy):
    entity_type = EntityType.USER
    model = User

    def can_create(self, session, data):
        if session.is_privileged:
            if field(data, "role") == UserRole.OWNER and not session.is_owner:
                return deny("Only owners can create owner accounts")
            return allow()
        return deny("Only administrators can create users")

    def can_read(self, session, row):
        if session.is_privileged or is_self(session, field(row, "id")):
            return allow()
        return deny("Insufficient permissions to view this user")

    def can_update(self, session, row, data):
        if session.is_owner:
            return allow()
        if session.is_admin and field(row, "role") != UserRole.OWNER:
            if field(data, "role") == UserRole.OWNER:
                return deny("Only owners can grant the owner role")
            return allow()
        if is_self(session, field(row, "id")):
            if "role" in data or "is_active" in data:
                return deny("Users cannot change their own role or status")
            return allow()
        return deny("Insufficient permissions to update this user")

    def can_delete(self, session, row):
        if session.is_owner and not is_self(session, field(row, "id")):
            return allow()
        if session.is_admin and field(row, "role") in (UserRole.STAFF, UserRole.CUSTOMER):
            return allow()
        return deny("Insufficient permissions to delete this user")

    def can_list(self, session):
        if session.is_privileged:
            return allow()
        return deny("Only administrators can list users")

    def scope(self, session):
        if session.is_privileged:
            return None
        return User.id == session.user_id


class PetPolicy(EntityPolicy):
    entity_type = EntityType.PET
    model = Pet

    def prepare_create(self, session, data):
        data = dict(data)
        if session.is_customer and not data.get("owner_id"):
            data["owner_id"] = session.user_id
        return data

    def can_create(self, session, data):
        if session.is_staff_member:
            return allow()
        if session.is_customer and is_self(session, field(data, "owner_id")):
            return allow()
        return deny("Cannot create pets for other customers")

    def can_read(self, session, row):
        if session.is_staff_member:
            return allow()
        if session.is_customer and is_self(session, field(row, "owner_id")):
            return allow()
        return deny("Insufficient permissions to view this pet")

    def can_update(self, session, row, data):
        if session.is_staff_member:
            return allow()
        if session.is_customer and is_self(session, field(row, "owner_id")):
            if "owner_id" in data and not is_self(session, data["owner_id"]):
                return deny("Cannot transfer pets to other customers")
            return allow()
        return deny("Insufficient permissions to update this pet")

    def can_delete(self, session, row):
        if session.is_privileged:
            return allow()
        if session.is_customer and is_self(session, field(row, "owner_id")):
            return allow()
        return deny("Insufficient permissions to delete this pet")

    def can_list(self, session):
        return allow()

    def scope(self, session):
        if session.is_customer:
            return Pet.owner_id == session.user_id
        return None


class BookingPolicy(EntityPolicy):
    entity_type = EntityType.BOOKING
    model = Booking

    def prepare_create(self, session, data):
        data = dict(data)
        data["creator_id"] = session.user_id
        if not data.get("customer_id"):
            data["customer_id"] = session.user_id
        return data

    def can_create(self, session, data):
        if session.is_staff_member:
            return allow()
        if session.is_customer and is_self(session, field(data, "customer_id")):
            return allow()
        return deny("Cannot create booking for other customers")

    def can_read(self, session, row):
        if session.is_staff_member:
            return allow()
        if session.is_customer and is_self(session, field(row, "customer_id")):
            return allow()
        return deny("Insufficient permissions to view this booking")

    def can_update(self, session, row, data):
        if session.is_privileged:
            return allow()
        if session.is_staff:
            return needs_override("Staff updates require override token", OverrideScope.POLICY_BYPASS)
        if session.is_customer and is_self(session, field(row, "customer_id")):
            return needs_override("Customer updates require override", OverrideScope.POLICY_BYPASS)
        return deny("Insufficient permissions to update this booking")

    def can_delete(self, session, row):
        if session.is_privileged:
            return allow()
        if session.is_customer and is_self(session, field(row, "customer_id")):
            return needs_override("Customer cancellations require override", OverrideScope.POLICY_BYPASS)
        return deny("Insufficient permissions to delete this booking")

    def can_list(self, session):
        return allow()

    def scope(self, session):
        if session.is_customer:
            return Booking.customer_id == session.user_id
        return None


class KennelPolicy(EntityPolicy):
    entity_type = EntityType.KENNEL
    model = Kennel

    def can_create(self, session, data):
        if session.is_privileged:
            return allow()
        return deny("Only administrators can create kennels")

    def can_read(self, session, row):
        return allow()

    def can_update(self, session, row, data):
        if session.is_privileged:
            return allow()
        return deny("Only administrators can update kennels")

    def can_delete(self, session, row):
        if session.is_privileged:
            return allow()
        return deny("Only administrators can delete kennels")

    def can_list(self, session):
        return allow()


class CareLogPolicy(EntityPolicy):
    entity_type = EntityType.CARE_LOG
    model = CareLog

    def prepare_create(self, session, data):
        data = dict(data)
        if session.is_staff and not data.get("staff_id"):
            data["staff_id"] = session.user_id
        return data

    def can_create(self, session, data):
        if session.is_privileged:
            return allow()
        if session.is_staff and is_self(session, field(data, "staff_id")):
            return allow()
        return deny("Only staff can create care logs")

    def can_read(self, session, row):
        if session.is_staff_member:
            return allow()
        booking = field(row, "booking")
        if session.is_customer and is_self(session, field(booking, "customer_id")):
            return allow()
        return deny("Insufficient permissions to view care logs")

    def can_update(self, session, row, data):
        if session.is_privileged:
            return allow()
        if session.is_staff and is_self(session, field(row, "staff_id")):
            return allow()
        return deny("Insufficient permissions to update this care log")

    def can_delete(self, session, row):
        if session.is_privileged:
            return allow()
        return deny("Only administrators can delete care logs")

    def can_list(self, session):
        return allow()

    def scope(self, session):
        if session.is_customer:
            owned = select(Booking.id).where(Booking.customer_id == session.user_id)
            return CareLog.booking_id.in_(owned)
        return None


class NotificationPolicy(EntityPolicy):
    entity_type = EntityType.NOTIFICATION
    model = Notification

    def prepare_create(self, session, data):
        data = dict(data)
        if session.is_customer and not data.get("user_id"):
            data["user_id"] = session.user_id
        return data

    def can_create(self, session, data):
        if session.is_staff_member:
            return allow()
        if session.is_customer and is_self(session, field(data, "user_id")):
            return allow()
        return deny("Cannot create notifications for other users")

    def can_read(self, session, row):
        if session.is_privileged or is_self(session, field(row, "user_id")):
            return allow()
        return deny("Insufficient permissions to view this notification")

    def can_update(self, session, row, data):
        if session.is_privileged or is_self(session, field(row, "user_id")):
            return allow()
        return deny("Insufficient permissions to update this notification")

    def can_delete(self, session, row):
        if session.is_privileged or is_self(session, field(row, "user_id")):
            return allow()
        return deny("Insufficient permissions to delete this notification")

    def can_list(self, session):
        return allow()

    def scope(self, session):
        if session.is_privileged:
            return None
        return Notification.user_id == session.user_id


POLICIES: Mapping[EntityType, EntityPolicy] = MappingProxyType({
    policy.entity_type: policy
    for policy in (
        UserPolicy(),
        PetPolicy(),
        BookingPolicy(),
        KennelPolicy(),
        CareLogPolicy(),
        NotificationPolicy(),
    )
})


def get_policy(entity_type: EntityType) -> EntityPolicy:
    return POLICIES[EntityType(entity_type)]
