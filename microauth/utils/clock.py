# microauth/utils/clock.py
from datetime import datetime, timedelta, timezone


def utcnow() -> datetime:
    # Naive UTC: SQLite drops tzinfo, so every stored timestamp is naive UTC
    return datetime.now(timezone.utc).replace(tzinfo=None)


def expires_in(seconds: int) -> datetime:
    return utcnow() + timedelta(seconds=seconds)


def to_epoch(value: datetime) -> int:
    return int(value.replace(tzinfo=timezone.utc).timestamp())
