"""Pydantic schemas for request/response validation."""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from kennel.clock import as_naive_utc
from kennel.models.enums import (
    ApprovalState,
    BookingStatus,
    CareLogType,
    KennelSize,
    OverrideScope,
    UserRole,
)


def booking_window_error(start: datetime, end: datetime) -> Optional[str]:
    """Stays run from one to thirty days. Returns the broken rule, if any."""
    start, end = as_naive_utc(start), as_naive_utc(end)
    if end <= start:
        return "End date must be after start date"
    days = (end - start).total_seconds() / 86400
    if days < 1:
        return "Booking must be at least 1 day long"
    if days > 30:
        return "Booking cannot exceed 30 days"
    return None


class CamelModel(BaseModel):
    """Wire models speak camelCase; Python code uses snake_case."""
    model_config = ConfigDict(populate_by_name=True)


# Override schemas
class IssueOverrideRequest(CamelModel):
    issued_to_user_id: str = Field(..., alias="issuedToUserId", min_length=1)
    scope: OverrideScope
    entity_type: str = Field(..., alias="entityType", min_length=1)
    entity_id: str = Field(..., alias="entityId", min_length=1)
    reason: str = Field(..., min_length=1, max_length=500)
    expires_in_minutes: int = Field(15, alias="expiresInMinutes", ge=1, le=15)


class IssueOverrideResponse(CamelModel):
    token: str
    expires_at: datetime = Field(..., alias="expiresAt")
    scope: OverrideScope
    entity_type: str = Field(..., alias="entityType")
    entity_id: str = Field(..., alias="entityId")


class ConsumeOverrideRequest(CamelModel):
    token: str = Field(..., min_length=1)
    reason: Optional[str] = Field(None, max_length=500)


class ConsumeOverrideResponse(CamelModel):
    success: bool = True
    override_session_id: str = Field(..., alias="overrideSessionId")
    expires_at: datetime = Field(..., alias="expiresAt")
    scope: OverrideScope
    entity_type: str = Field(..., alias="entityType")
    entity_id: str = Field(..., alias="entityId")


class RevokeOverrideRequest(CamelModel):
    reason: str = Field(..., min_length=1, max_length=500)


class ApprovalTokenView(CamelModel):
    id: str
    scope: OverrideScope
    state: ApprovalState
    entity_type: Optional[str] = Field(None, alias="entityType")
    entity_id: Optional[str] = Field(None, alias="entityId")
    reason: Optional[str] = None
    issued_by_admin_id: str = Field(..., alias="issuedByAdminId")
    issued_to_user_id: str = Field(..., alias="issuedToUserId")
    expires_at: str = Field(..., alias="expiresAt")
    used_at: Optional[str] = Field(None, alias="usedAt")
    revoked_at: Optional[str] = Field(None, alias="revokedAt")


class MeResponse(CamelModel):
    user_id: str = Field(..., alias="userId")
    role: UserRole
    home: str


# User schemas
class UserCreate(BaseModel):
    email: str = Field(..., min_length=3, max_length=254, pattern=r"^[^@\s]+@[^@\s]+$")
    name: Optional[str] = Field(None, max_length=120)
    role: UserRole = UserRole.CUSTOMER
    phone: Optional[str] = Field(None, max_length=40)
    address: Optional[str] = Field(None, max_length=300)


class UserUpdate(BaseModel):
    name: Optional[str] = Field(None, max_length=120)
    role: Optional[UserRole] = None
    phone: Optional[str] = Field(None, max_length=40)
    address: Optional[str] = Field(None, max_length=300)
    is_active: Optional[bool] = None


# Pet schemas
class PetCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=80)
    breed: Optional[str] = Field(None, max_length=120)
    weight: Optional[float] = Field(None, gt=0, le=500)
    age: Optional[int] = Field(None, ge=0, le=50)
    vaccinations: List[str] = Field(default_factory=list)
    medical_notes: Optional[str] = Field(None, max_length=1000)
    owner_id: Optional[str] = None


class PetUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=80)
    breed: Optional[str] = Field(None, max_length=120)
    weight: Optional[float] = Field(None, gt=0, le=500)
    age: Optional[int] = Field(None, ge=0, le=50)
    vaccinations: Optional[List[str]] = None
    medical_notes: Optional[str] = Field(None, max_length=1000)
    owner_id: Optional[str] = None


# Kennel schemas
class KennelCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    size: KennelSize
    description: Optional[str] = Field(None, max_length=500)
    price: float = Field(..., ge=0)
    capacity: int = Field(1, ge=1)
    is_active: bool = True


class KennelUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=120)
    size: Optional[KennelSize] = None
    description: Optional[str] = Field(None, max_length=500)
    price: Optional[float] = Field(None, ge=0)
    capacity: Optional[int] = Field(None, ge=1)
    is_active: Optional[bool] = None


# Booking schemas
class BookingCreate(BaseModel):
    pet_id: str
    kennel_id: str
    start_date: datetime
    end_date: datetime
    price: float = Field(..., ge=0)
    status: BookingStatus = BookingStatus.PENDING
    customer_id: Optional[str] = None
    notes: Optional[str] = Field(None, max_length=1000)

    @model_validator(mode="after")
    def _check_dates(self):
        problem = booking_window_error(self.start_date, self.end_date)
        if problem:
            raise ValueError(problem)
        return self


class BookingUpdate(BaseModel):
    kennel_id: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    price: Optional[float] = Field(None, ge=0)
    status: Optional[BookingStatus] = None
    notes: Optional[str] = Field(None, max_length=1000)

    @classmethod
    def check_merged(cls, current: Dict[str, Any], changes: Dict[str, Any]) -> List[Dict[str, str]]:
        """Re-check the stay window with whichever stored date the update keeps."""
        if "start_date" not in changes and "end_date" not in changes:
            return []
        start = changes.get("start_date", current.get("start_date"))
        end = changes.get("end_date", current.get("end_date"))
        if start is None or end is None:
            return []
        problem = booking_window_error(start, end)
        if problem:
            field = "end_date" if "end_date" in changes else "start_date"
            return [{"field": field, "message": problem}]
        return []


# Care log schemas
class CareLogCreate(BaseModel):
    booking_id: str
    type: CareLogType
    note: Optional[str] = Field(None, max_length=2000)
    staff_id: Optional[str] = None
    timestamp: Optional[datetime] = None


class CareLogUpdate(BaseModel):
    type: Optional[CareLogType] = None
    note: Optional[str] = Field(None, max_length=2000)
    timestamp: Optional[datetime] = None


# Notification schemas
class NotificationCreate(BaseModel):
    user_id: Optional[str] = None
    type: str = Field(..., min_length=1, max_length=60)
    title: str = Field(..., min_length=1, max_length=200)
    message: str = Field(..., min_length=1, max_length=2000)
    payload: Optional[Dict[str, Any]] = None


class NotificationUpdate(BaseModel):
    read_at: Optional[datetime] = None
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    message: Optional[str] = Field(None, min_length=1, max_length=2000)


# Error response
class ErrorResponse(BaseModel):
    error: str
    code: str
    details: Dict[str, Any] = {}
