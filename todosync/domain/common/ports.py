from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime


class Clock(ABC):
    """Source of timezone-aware UTC timestamps; tests swap in a fixed clock."""

    @abstractmethod
    def now(self) -> datetime: ...
