"""Timestamp helpers shared by the store and the services."""

from datetime import datetime, timezone
from typing import Optional

# Matches without a completion timestamp sort as the earliest possible
EPOCH = datetime(1970, 1, 1)


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, the form the store persists."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize aware datetimes to naive UTC so they compare with stored ones."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
