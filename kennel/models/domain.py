"""Domain models - the tenant-facing kennel entities."""
from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum as SQLEnum,
    Float,
    ForeignKey,
    Integer,
    JSON,
    String,
)
from sqlalchemy.orm import relationship

from kennel.clock import utcnow
from kennel.database import Base, new_id
from kennel.models.enums import BookingStatus, CareLogType, KennelSize, UserRole


class User(Base):
    """
    An account known to the identity provider.

    mfa_verified_at is written by the identity provider whenever the user
    passes a second factor; the core only reads it.
    """
    __tablename__ = "users"

    id = Column(String(32), primary_key=True, default=new_id)
    email = Column(String, nullable=False, unique=True)
    name = Column(String, nullable=True)
    role = Column(SQLEnum(UserRole), nullable=False, default=UserRole.CUSTOMER)
    phone = Column(String, nullable=True)
    address = Column(String, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    mfa_verified_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    pets = relationship("Pet", back_populates="owner", cascade="all, delete-orphan")


class Pet(Base):
    __tablename__ = "pets"

    id = Column(String(32), primary_key=True, default=new_id)
    owner_id = Column(String(32), ForeignKey("users.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    breed = Column(String, nullable=True)
    weight = Column(Float, nullable=True)
    age = Column(Integer, nullable=True)
    vaccinations = Column(JSON, nullable=False, default=list)  # PHI
    medical_notes = Column(String, nullable=True)  # PHI

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    owner = relationship("User", back_populates="pets")
    bookings = relationship("Booking", back_populates="pet")


class Kennel(Base):
    __tablename__ = "kennels"

    id = Column(String(32), primary_key=True, default=new_id)
    name = Column(String, nullable=False)
    size = Column(SQLEnum(KennelSize), nullable=False)
    description = Column(String, nullable=True)
    price = Column(Float, nullable=False, default=0)
    capacity = Column(Integer, nullable=False, default=1)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    bookings = relationship("Booking", back_populates="kennel")


class Booking(Base):
    """
    A stay of one pet in one kennel.

    Invariants:
    - the stay runs one to thirty days, checked on create and on any
      update that moves either date
    - customer_id is the owning customer; creator_id is whoever booked it
    """
    __tablename__ = "bookings"

    id = Column(String(32), primary_key=True, default=new_id)
    customer_id = Column(String(32), ForeignKey("users.id"), nullable=False, index=True)
    creator_id = Column(String(32), ForeignKey("users.id"), nullable=True)
    pet_id = Column(String(32), ForeignKey("pets.id"), nullable=False)
    kennel_id = Column(String(32), ForeignKey("kennels.id"), nullable=False)
    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=False)
    price = Column(Float, nullable=False, default=0)
    status = Column(SQLEnum(BookingStatus), nullable=False, default=BookingStatus.PENDING)
    notes = Column(String, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    pet = relationship("Pet", back_populates="bookings")
    kennel = relationship("Kennel", back_populates="bookings")
    care_logs = relationship("CareLog", back_populates="booking", cascade="all, delete-orphan")


class CareLog(Base):
    __tablename__ = "care_logs"

    id = Column(String(32), primary_key=True, default=new_id)
    booking_id = Column(String(32), ForeignKey("bookings.id"), nullable=False, index=True)
    staff_id = Column(String(32), ForeignKey("users.id"), nullable=False)
    type = Column(SQLEnum(CareLogType), nullable=False)
    note = Column(String, nullable=True)
    timestamp = Column(DateTime, nullable=False, default=utcnow)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    booking = relationship("Booking", back_populates="care_logs")


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(String(32), primary_key=True, default=new_id)
    user_id = Column(String(32), ForeignKey("users.id"), nullable=False, index=True)
    type = Column(String, nullable=False)
    title = Column(String, nullable=False)
    message = Column(String, nullable=False)
    payload = Column(JSON, nullable=True)
    read_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
