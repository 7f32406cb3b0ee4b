"""Tool configuration loaded from BERTH_* environment variables."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class BerthSettings(BaseSettings):
    """User-level berth settings.

    All fields are read from environment variables with the ``BERTH_`` prefix.
    For example, ``BERTH_LOG_LEVEL=DEBUG`` maps to ``log_level``.

    Per-repository settings (ports, scripts, worktree location) are **not**
    managed here -- they live in the repository's ``berth.json``, see
    :mod:`berth.runtime.models.config`.
    """

    model_config = SettingsConfigDict(
        env_prefix="BERTH_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # -- Logging ---------------------------------------------------------------
    log_level: str = "WARNING"

    # -- Global state ----------------------------------------------------------
    state_dir: Path = Path("~/.local/state/berth")
    """Directory holding the global repository registry (``repos.json``)."""

    # -- Port allocation -------------------------------------------------------
    probe_timeout: float = 0.2
    """Seconds to wait for a liveness probe connection before calling a port free."""

    max_port_attempts: int = 100
    """Number of candidate blocks the allocator tries before giving up."""

    # -- Lifecycle -------------------------------------------------------------
    fetch_on_create: bool = True
    """Fetch ``origin`` before creating a workspace so new branches start from the latest default branch."""

    session_prefix: str = "berth"
    """Leading component of background session names: ``{prefix}/{repo}/{workspace}``."""

    # -- Helpers ---------------------------------------------------------------

    @property
    def registry_path(self) -> Path:
        return self.state_dir.expanduser() / "repos.json"


def get_settings() -> BerthSettings:
    """Return a cached settings instance.

    Reads from environment variables and ``.env`` on first call, then returns
    the same object.  Call ``_get_settings_cached.cache_clear()`` in tests to
    force a re-read after overriding env vars.
    """
    return _get_settings_cached()


@lru_cache(maxsize=1)
def _get_settings_cached() -> BerthSettings:
    return BerthSettings()
