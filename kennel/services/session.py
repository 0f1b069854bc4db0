"""The per-request identity the core reads (and never writes)."""
from dataclasses import dataclass

from kennel.models.enums import UserRole
from kennel.services.roles import PRIVILEGED_ROLES, STAFF_ROLES


@dataclass(frozen=True)
class AuthSession:
    user_id: str
    role: UserRole

    @property
    def is_owner(self) -> bool:
        return self.role == UserRole.OWNER

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def is_staff(self) -> bool:
        return self.role == UserRole.STAFF

    @property
    def is_customer(self) -> bool:
        return self.role == UserRole.CUSTOMER

    @property
    def is_privileged(self) -> bool:
        """OWNER or ADMIN."""
        return self.role in PRIVILEGED_ROLES

    @property
    def is_staff_member(self) -> bool:
        """OWNER, ADMIN or STAFF."""
        return self.role in STAFF_ROLES
