"""Centralized settings for schema-spine.

One validated, cached settings object supplies the database URL, logging
options and the tuning knobs of the evolution engine (batch size, inter-batch
pause, transaction retry budget).  Values come from ``SCHEMASPINE_*``
environment variables or a ``.env`` file.

Examples:
    >>> from schemaspine.core.settings import get_settings
    >>> settings = get_settings()
    >>> settings.default_batch_size
    1000

Tags:
    schema-spine, configuration, settings, pydantic

Doc-Types:
    api-reference
"""

from __future__ import annotations

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_ISOLATION_LEVELS = ("read_committed", "repeatable_read", "serializable")


class SchemaSpineSettings(BaseSettings):
    """schema-spine configuration.

    All fields can be set via ``SCHEMASPINE_*`` environment variables (e.g.
    ``SCHEMASPINE_DATABASE_URL=postgresql://localhost/app``).
    """

    model_config = SettingsConfigDict(
        env_prefix="SCHEMASPINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Database ─────────────────────────────────────────────────
    database_url: str = Field(default="postgresql://localhost:5432/postgres")
    statement_timeout_ms: int = Field(default=30_000, ge=0)
    isolation_level: str = Field(default="read_committed")
    transaction_max_attempts: int = Field(default=3, ge=1)
    transaction_retry_base_delay: float = Field(default=0.1, ge=0)

    # ── Data migration ───────────────────────────────────────────
    default_batch_size: int = Field(default=1000, ge=1)
    batch_pause_ms: int = Field(default=10, ge=0)

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    json_logs: bool | None = Field(default=None, description="None = JSON when stdout is not a tty")

    @field_validator("isolation_level")
    @classmethod
    def _check_isolation_level(cls, v: str) -> str:
        normalized = v.strip().lower().replace(" ", "_").replace("-", "_")
        if normalized not in _ISOLATION_LEVELS:
            raise ValueError(f"isolation_level must be one of {_ISOLATION_LEVELS}, got {v!r}")
        return normalized


# ── Settings factory with caching ────────────────────────────────────────

_settings_cache: dict[str, SchemaSpineSettings] = {}


def get_settings(*, _force_reload: bool = False) -> SchemaSpineSettings:
    """Load, validate, and cache a :class:`SchemaSpineSettings` instance."""
    if not _force_reload and "default" in _settings_cache:
        return _settings_cache["default"]
    settings = SchemaSpineSettings()
    _settings_cache["default"] = settings
    return settings


def clear_settings_cache() -> None:
    """Drop the cached settings (tests, reconfiguration)."""
    _settings_cache.clear()


__all__ = ["SchemaSpineSettings", "get_settings", "clear_settings_cache"]
