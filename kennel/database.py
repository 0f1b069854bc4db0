"""Database configuration and session management."""
import uuid

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from kennel.config import get_settings


def build_engine(url: str) -> Engine:
    """Create an engine with per-dialect settings."""
    if url.startswith("sqlite"):
        # SQLite-specific config
        return create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": 30},
        )
    # PostgreSQL config (production)
    return create_engine(
        url,
        pool_pre_ping=True,  # Verify connections before using
        pool_size=5,
        max_overflow=10,
    )


engine = build_engine(get_settings().DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def new_id() -> str:
    return uuid.uuid4().hex


def get_db():
    """Dependency for FastAPI endpoints to get database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
