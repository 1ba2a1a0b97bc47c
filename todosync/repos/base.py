# -*- coding: utf-8 -*-
"""Base repository with the shared Database handle and clock."""
from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Optional

from todosync.domain.common.errors import ValidationError
from todosync.domain.common.ports import Clock
from todosync.domain.common.time import to_iso
from todosync.infra.clock.system_clock import SystemClock
from todosync.infra.db.connection import Database


class BaseRepo:
    """Base for local repos: shared Database, clock and _now_iso()."""

    def __init__(self, db: Database, clock: Optional[Clock] = None) -> None:
        self._db = db
        self._clock = clock or SystemClock()

    def _now(self) -> datetime:
        return self._clock.now()

    def _now_iso(self) -> str:
        return to_iso(self._now())

    @staticmethod
    def _dump_json(value: Any) -> Optional[str]:
        return json.dumps(value, ensure_ascii=False) if value is not None else None

    @staticmethod
    def _load_json(raw: Optional[str], field: str) -> Any:
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError as exc:
            raise ValidationError(f"Invalid {field} JSON") from exc
