"""UTC time helpers. Stored timestamps are naive UTC."""
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def to_iso(value: datetime) -> str:
    """Render a naive-UTC (or aware) datetime as ISO-8601 with a Z suffix."""
    return as_naive_utc(value).isoformat(timespec="milliseconds") + "Z"


def from_iso(value: str) -> datetime:
    """Parse ISO-8601 into naive UTC. Raises ValueError on garbage."""
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return as_naive_utc(datetime.fromisoformat(value))
