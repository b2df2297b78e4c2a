"""Application configuration helpers."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path

_PREFIX = "INVENTORY_LEDGER_"


def _env(name: str, default: str) -> str:
    return os.environ.get(f"{_PREFIX}{name}", default)


def _env_bool(name: str, default: bool) -> bool:
    return _env(name, "true" if default else "false").lower() in {"1", "true", "yes", "on"}


def _default_data_root() -> Path:
    """Return the platform specific directory used for persistent data."""

    if os.name == "nt":
        base = Path(os.environ.get("LOCALAPPDATA", Path.home()))
        return base / "InventoryLedger"
    return Path.home() / ".inventory_ledger"


def _default_database_url() -> str:
    """Resolve the database URL taking overrides into account."""

    override = os.environ.get(f"{_PREFIX}DATABASE_URL")
    if override:
        return override
    return f"sqlite:///{_default_data_root() / 'inventory.sqlite3'}"


@dataclass(slots=True)
class Settings:
    """Runtime configuration loaded from environment variables."""

    app_name: str = field(default_factory=lambda: _env("APP_NAME", "Inventory Ledger"))
    host: str = field(default_factory=lambda: _env("HOST", "127.0.0.1"))
    port: int = field(default_factory=lambda: int(_env("PORT", "3003")))
    reload: bool = field(default_factory=lambda: _env_bool("RELOAD", False))
    log_level: str = field(default_factory=lambda: _env("LOG_LEVEL", "info"))
    log_json: bool = field(default_factory=lambda: _env_bool("LOG_JSON", False))
    database_url: str = field(default_factory=_default_database_url)
    api_prefix: str = field(default_factory=lambda: _env("API_PREFIX", "/api"))

    # Consistency guard
    max_attempts: int = field(default_factory=lambda: int(_env("MAX_ATTEMPTS", "5")))
    retry_base_delay: float = field(default_factory=lambda: float(_env("RETRY_BASE_DELAY", "0.01")))
    retry_max_delay: float = field(default_factory=lambda: float(_env("RETRY_MAX_DELAY", "0.25")))
    lock_timeout: float = field(default_factory=lambda: float(_env("LOCK_TIMEOUT", "5.0")))

    default_page_size: int = field(default_factory=lambda: int(_env("DEFAULT_PAGE_SIZE", "50")))
    max_page_size: int = field(default_factory=lambda: int(_env("MAX_PAGE_SIZE", "200")))
    strict_reservations: bool = field(default_factory=lambda: _env_bool("STRICT_RESERVATIONS", False))

    @property
    def database_path(self) -> Path | None:
        """Filesystem path of a SQLite database, ``None`` for other backends."""

        prefix = "sqlite:///"
        if not self.database_url.startswith(prefix):
            return None
        raw = self.database_url[len(prefix):]
        if not raw or raw == ":memory:":
            return None
        return Path(raw).expanduser()

    def ensure_storage(self) -> None:
        """Ensure that the database directory exists."""

        path = self.database_path
        if path is not None:
            path.parent.mkdir(parents=True, exist_ok=True)

    def clamp_page_size(self, limit: int | None) -> int:
        if limit is None or limit <= 0:
            return self.default_page_size
        return min(limit, self.max_page_size)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached application settings."""

    settings = Settings()
    settings.ensure_storage()
    return settings
