from __future__ import annotations

from datetime import datetime, timezone

from todosync.domain.common.ports import Clock


class SystemClock(Clock):
    """Wall clock in UTC; every timestamp the engine stores is UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)
