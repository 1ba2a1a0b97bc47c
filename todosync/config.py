from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from dotenv import load_dotenv

from todosync.constants import (
    DEFAULT_DATA_DIR,
    DEFAULT_GC_DAYS,
    DEFAULT_LOCAL_DB_NAME,
    DEFAULT_REMINDER_MINUTES,
    DEFAULT_REMOTE_POOL_SIZE,
    DEFAULT_REMOTE_URL_ENV,
)
from todosync.domain.common.errors import ValidationError


@dataclass(frozen=True)
class Settings:
    data_dir: Path
    local_db_name: str = DEFAULT_LOCAL_DB_NAME
    remote_url: Optional[str] = None
    remote_url_env: str = DEFAULT_REMOTE_URL_ENV
    remote_pool_size: int = DEFAULT_REMOTE_POOL_SIZE
    history_retention_days: int = DEFAULT_GC_DAYS
    reminder_window_minutes: int = DEFAULT_REMINDER_MINUTES

    def local_db_path(self) -> Path:
        name = self.local_db_name
        if ".." in name or "/" in name or "\\" in name:
            raise ValidationError(
                f"Invalid database name {name!r}: must be a simple filename without path separators"
            )
        return self.data_dir / name

    def is_remote_configured(self) -> bool:
        return bool(self.remote_url and self.remote_url.strip())


def normalize_remote_url(url: str) -> str:
    """
    postgres:// URLs (as handed out by Neon and friends) get the asyncpg driver;
    asyncpg spells sslmode=require as ssl=require. URLs naming a driver pass through.
    """
    parts = urlsplit(url.strip())
    if parts.scheme not in ("postgres", "postgresql"):
        return url.strip()
    query = [("ssl", v) if k == "sslmode" else (k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True)]
    return urlunsplit(("postgresql+asyncpg", parts.netloc, parts.path, urlencode(query), parts.fragment))


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer, got {raw!r}") from None
    if value <= 0:
        raise ValidationError(f"{name} must be positive, got {value}")
    return value


def load_settings() -> Settings:
    load_dotenv()

    data_dir = Path(os.getenv("TODOSYNC_DATA_DIR", DEFAULT_DATA_DIR).strip()).expanduser()
    db_name = os.getenv("TODOSYNC_DB_NAME", DEFAULT_LOCAL_DB_NAME).strip() or DEFAULT_LOCAL_DB_NAME
    url_env = os.getenv("TODOSYNC_REMOTE_URL_ENV", DEFAULT_REMOTE_URL_ENV).strip() or DEFAULT_REMOTE_URL_ENV
    remote_url = os.getenv(url_env, "").strip() or None

    settings = Settings(
        data_dir=data_dir,
        local_db_name=db_name,
        remote_url=remote_url,
        remote_url_env=url_env,
        remote_pool_size=_int_env("TODOSYNC_REMOTE_POOL_SIZE", DEFAULT_REMOTE_POOL_SIZE),
        history_retention_days=_int_env("TODOSYNC_HISTORY_DAYS", DEFAULT_GC_DAYS),
        reminder_window_minutes=_int_env("TODOSYNC_REMINDER_MINUTES", DEFAULT_REMINDER_MINUTES),
    )
    # fail early on a bad name rather than at first use
    settings.local_db_path()
    return settings
