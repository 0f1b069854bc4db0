"""Role registry: where each role lands after sign-in."""
from typing import Any, Dict, Optional

from kennel.models.enums import UserRole

ROLE_HOME: Dict[UserRole, str] = {
    UserRole.OWNER: "/owner/control",
    UserRole.ADMIN: "/admin/dashboard",
    UserRole.STAFF: "/staff/overview",
    UserRole.CUSTOMER: "/customer/home",
}

DEFAULT_HOME_PATH = "/login"

PRIVILEGED_ROLES = frozenset({UserRole.OWNER, UserRole.ADMIN})
STAFF_ROLES = frozenset({UserRole.OWNER, UserRole.ADMIN, UserRole.STAFF})


def parse_user_role(value: Any) -> Optional[UserRole]:
    if isinstance(value, UserRole):
        return value
    try:
        return UserRole(str(value).strip().upper())
    except ValueError:
        return None


def resolve_role_home(role: Any) -> str:
    parsed = parse_user_role(role)
    if parsed is None:
        return DEFAULT_HOME_PATH
    return ROLE_HOME[parsed]
