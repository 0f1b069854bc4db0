"""Pytest configuration and shared fixtures."""
from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from kennel.config import Settings
from kennel.database import Base, get_db
from kennel.main import create_app
from kennel.models.domain import Kennel, Pet, User
from kennel.models.enums import KennelSize, UserRole
from kennel.services.metrics import KennelMetrics
from kennel.services.override_tokens import OverrideTokenCodec
from kennel.services.overrides import OverrideService
from kennel.services.session import AuthSession

TEST_SECRET = "test-override-secret"


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 2, 9, 30, 0))


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        DATABASE_URL="sqlite:///:memory:",
        OVERRIDE_HMAC_SECRET=TEST_SECRET,
        AUDIT_DENIALS=False,
        MFA_ENFORCE_PRIVILEGED=True,
    )


@pytest.fixture
def engine():
    """A fresh in-memory database for each test, shared across threads."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def codec(clock):
    return OverrideTokenCodec(TEST_SECRET, clock=clock)


@pytest.fixture
def metrics():
    return KennelMetrics()


@pytest.fixture
def override_service(db_session, codec, settings, clock, metrics):
    return OverrideService(db_session, codec, settings, clock=clock, metrics=metrics)


def make_user(db, role, email, mfa_verified_at=None, name=None):
    user = User(email=email, name=name or email.split("@")[0], role=role, mfa_verified_at=mfa_verified_at)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def owner(db_session, clock):
    return make_user(db_session, UserRole.OWNER, "owner@kennel.com", mfa_verified_at=clock.now)


@pytest.fixture
def admin(db_session, clock):
    """Admin who passed MFA just now."""
    return make_user(db_session, UserRole.ADMIN, "admin@kennel.com", mfa_verified_at=clock.now)


@pytest.fixture
def staff(db_session):
    return make_user(db_session, UserRole.STAFF, "staff@kennel.com")


@pytest.fixture
def customer(db_session):
    return make_user(db_session, UserRole.CUSTOMER, "customer@example.com")


@pytest.fixture
def other_customer(db_session):
    return make_user(db_session, UserRole.CUSTOMER, "neighbour@example.com")


def as_session(user):
    return AuthSession(user_id=user.id, role=user.role)


@pytest.fixture
def kennel(db_session):
    kennel = Kennel(name="Medium Kennel #1", size=KennelSize.MEDIUM, price=45.0, capacity=2)
    db_session.add(kennel)
    db_session.commit()
    db_session.refresh(kennel)
    return kennel


@pytest.fixture
def pets(db_session, customer, other_customer):
    """P1 and P2 belong to customer; P3 belongs to someone else."""
    p1 = Pet(owner_id=customer.id, name="Buddy", breed="Golden Retriever",
             medical_notes="No allergies", vaccinations=["Rabies"])
    p2 = Pet(owner_id=customer.id, name="Luna", breed="Border Collie")
    p3 = Pet(owner_id=other_customer.id, name="Max", breed="German Shepherd")
    db_session.add_all([p1, p2, p3])
    db_session.commit()
    for pet in (p1, p2, p3):
        db_session.refresh(pet)
    return p1, p2, p3


@pytest.fixture
def app(settings, clock, session_factory):
    app = create_app(settings=settings, clock=clock)

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    return app


@pytest.fixture
def client(app):
    # Not used as a context manager: the lifespan would touch the default database.
    return TestClient(app)


def auth(user):
    return {"X-User-Id": user.id}
