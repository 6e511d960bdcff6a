"""Runtime configuration — env-driven via pydantic-settings.

Reads from a .env file and ENVFORGE_* environment variables.
"""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class EnvforgeSettings(BaseSettings):
    """Settings with environment variable overrides.

    All settings can be overridden via ENVFORGE_* environment variables
    or a .env file in the working directory.

    Examples
    --------
    Override via environment::

        export ENVFORGE_LOG_LEVEL=DEBUG
        export ENVFORGE_MAX_WORKERS=16
        export ENVFORGE_RESOLVE_TIMEOUT_SECONDS=120

    Or via .env file::

        ENVFORGE_PERSIST_CACHE=true
        ENVFORGE_SCRIPT_DIALECT=fish
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="ENVFORGE_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    log_level: str = "WARNING"

    # Artifact cache
    cache_path: Path = Path(".envforge/cache")
    persist_cache: bool = False

    # Resolution
    max_workers: int = 8
    resolve_timeout_seconds: float = 60.0

    # Activation
    activation_mode: str = "process"
    script_dialect: str = "posix"
    teardown_grace_seconds: float = 5.0

    # Reproducibility
    lockfile_name: str = "envforge.lock"


# Module-level singleton; import as `from envforge.config import settings`
settings = EnvforgeSettings()
