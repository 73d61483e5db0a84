"""Runtime settings for knoa.

Configuration is explicit, validated, and environment-driven. Every field
can be set through a ``KNOA_``-prefixed environment variable or a ``.env``
file; a few fields also honour the unprefixed names the workflow tooling has
always used (``NODE_ENV``, ``DEBUG_GIT``, ``LOG_LEVEL``, ``EVENT_HISTORY``...).

Examples:
    >>> from knoa.core.settings import get_settings
    >>> settings = get_settings()
    >>> settings.ai_context_path
    PosixPath('.../ai-context')

Tags:
    settings, configuration, pydantic, environment, knoa

Doc-Types:
    - API Reference
    - Configuration Guide
"""

from __future__ import annotations

from pathlib import Path

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class KnoaSettings(BaseSettings):
    """Settings shared by every knoa component.

    Fields
    ──────
    env                    : Runtime environment; ``development`` exposes stack traces
    debug_git              : Verbose logging around git invocations
    log_level / log_json   : structlog configuration
    base_path              : Project root all storage paths are relative to
    ai_context_dir         : Directory (under base_path) holding persisted state
    project_id             : Project identifier stamped on new sessions
    lock_*                 : LockManager timing, in milliseconds
    event_*                : EventBus debug and history behaviour
    cache_*                : CacheManager TTL (milliseconds) and capacity
    """

    model_config = SettingsConfigDict(
        env_prefix="KNOA_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # ── Environment ──────────────────────────────────────────────
    env: str = Field(
        default="development",
        validation_alias=AliasChoices("KNOA_ENV", "NODE_ENV", "env"),
    )
    debug_git: bool = Field(
        default=False,
        validation_alias=AliasChoices("KNOA_DEBUG_GIT", "DEBUG_GIT", "debug_git"),
    )

    # ── Observability ────────────────────────────────────────────
    log_level: str = Field(
        default="INFO",
        validation_alias=AliasChoices("KNOA_LOG_LEVEL", "LOG_LEVEL", "log_level"),
    )
    log_json: bool | None = None

    # ── Storage ──────────────────────────────────────────────────
    base_path: Path = Field(default_factory=Path.cwd)
    ai_context_dir: str = "ai-context"
    project_id: str = "knoa"

    # ── Locks ────────────────────────────────────────────────────
    lock_timeout_ms: int = Field(default=30000, ge=0)
    lock_retry_interval_ms: int = Field(default=100, ge=0)
    lock_max_retries: int = Field(default=50, ge=1)

    # ── Cache ────────────────────────────────────────────────────
    cache_ttl_ms: int = Field(default=300000, ge=0)
    cache_max_size: int = Field(default=1000, ge=1)

    # ── Events ───────────────────────────────────────────────────
    event_debug_mode: bool = Field(
        default=False,
        validation_alias=AliasChoices(
            "KNOA_EVENT_DEBUG_MODE", "EVENT_DEBUG", "event_debug_mode"
        ),
    )
    event_keep_history: bool = Field(
        default=False,
        validation_alias=AliasChoices(
            "KNOA_EVENT_KEEP_HISTORY", "EVENT_HISTORY", "event_keep_history"
        ),
    )
    event_history_limit: int = Field(
        default=100,
        ge=1,
        validation_alias=AliasChoices(
            "KNOA_EVENT_HISTORY_LIMIT", "EVENT_HISTORY_LIMIT", "event_history_limit"
        ),
    )

    @property
    def is_development(self) -> bool:
        return self.env.lower() == "development"

    @property
    def include_stack_traces(self) -> bool:
        """Error events carry ``stack`` only in development."""
        return self.is_development

    @property
    def ai_context_path(self) -> Path:
        return self.base_path / self.ai_context_dir


# ── Settings factory with caching ────────────────────────────────────────

_settings_cache: KnoaSettings | None = None


def get_settings(*, _force_reload: bool = False) -> KnoaSettings:
    """Load, validate, and cache a :class:`KnoaSettings` instance."""
    global _settings_cache
    if _settings_cache is None or _force_reload:
        _settings_cache = KnoaSettings()
    return _settings_cache


def clear_settings_cache() -> None:
    """Clear the settings cache (primarily for testing)."""
    global _settings_cache
    _settings_cache = None


__all__ = ["KnoaSettings", "get_settings", "clear_settings_cache"]
