"""Enums for the kennel core - closed sets for roles, scopes and states."""
from enum import Enum


class UserRole(str, Enum):
    """The four roles a session can carry. No other roles exist."""
    OWNER = "OWNER"
    ADMIN = "ADMIN"
    STAFF = "STAFF"
    CUSTOMER = "CUSTOMER"


class OverrideScope(str, Enum):
    """Category of privileged action an override token authorizes."""
    BOOKING_CAPACITY = "BOOKING_CAPACITY"
    PRICING = "PRICING"
    POLICY_BYPASS = "POLICY_BYPASS"
    REFUND = "REFUND"
    DEPOSIT_WAIVER = "DEPOSIT_WAIVER"
    ADMIN_ACTION = "ADMIN_ACTION"


class ApprovalState(str, Enum):
    """Derived lifecycle state of an approval token. Only CONSUMED is stored (as used_at)."""
    ISSUED = "ISSUED"
    CONSUMED = "CONSUMED"
    EXPIRED = "EXPIRED"
    REVOKED = "REVOKED"


class AuditAction(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    APPROVAL = "APPROVAL"
    OVERRIDE_TOKEN_CONSUMED = "OVERRIDE_TOKEN_CONSUMED"
    REVOKE = "REVOKE"
    ACCESS_DENIED = "ACCESS_DENIED"


class EntityType(str, Enum):
    """Entity types that have an access policy and a CRUD router."""
    USER = "user"
    PET = "pet"
    BOOKING = "booking"
    KENNEL = "kennel"
    CARE_LOG = "careLog"
    NOTIFICATION = "notification"


class CrudVerb(str, Enum):
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    LIST = "list"


class BookingStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CHECKED_IN = "CHECKED_IN"
    CHECKED_OUT = "CHECKED_OUT"
    CANCELLED = "CANCELLED"


class KennelSize(str, Enum):
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"
    XLARGE = "xlarge"


class CareLogType(str, Enum):
    FEEDING = "feeding"
    EXERCISE = "exercise"
    MEDICATION = "medication"
    GROOMING = "grooming"
    HEALTH_CHECK = "health_check"
    OTHER = "other"
