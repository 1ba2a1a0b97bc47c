from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from todosync.domain.common.errors import ValidationError

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def ensure_aware(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        raise ValidationError("datetime must be timezone-aware")
    return dt


def to_utc(dt: datetime) -> datetime:
    # naive values coming back from SQLite are UTC by construction
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_iso(dt: datetime) -> str:
    ensure_aware(dt)
    # fixed width so that stored values sort lexicographically
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def to_iso_opt(dt: Optional[datetime]) -> Optional[str]:
    return to_iso(dt) if dt is not None else None


def from_iso(s: str, field: str = "timestamp") -> datetime:
    try:
        dt = datetime.fromisoformat(s)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Invalid {field}: {s!r}") from exc
    return to_utc(dt)


def from_iso_opt(s: Optional[str], field: str = "timestamp") -> Optional[datetime]:
    return from_iso(s, field) if s else None
