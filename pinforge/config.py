"""Runtime configuration — env-driven.

Centralized settings using pydantic-settings. Reads from a ``.env`` file and
``PINFORGE_*`` environment variables.
"""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class ForgeSettings(BaseSettings):
    """Settings with environment variable overrides.

    All settings can be overridden via PINFORGE_* environment variables
    or a .env file in the working directory.

    Examples
    --------
    Override via environment::

        export PINFORGE_LOG_LEVEL=DEBUG
        export PINFORGE_CACHE_PATH=/srv/pinforge/cache
        export PINFORGE_ALLOW_BROKEN=true

    Or via .env file::

        PINFORGE_MAIN_BRANCH=trunk
        PINFORGE_COMMAND_TIMEOUT_SECONDS=7200
        PINFORGE_TOOLCHAIN_HASH=sha256-...
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="PINFORGE_",
        env_file_encoding="utf-8",
    )

    log_level: str = "INFO"

    # Inputs, relative to the source tree
    pin_file: Path = Path("tooling/nix/pins.json")
    lockfile: Path = Path("Cargo.lock")
    channel_file: Path = Path("rust-toolchain.toml")

    # Outputs and shared state
    output_path: Path = Path("result")
    cache_path: Path = Path(".pinforge/cache")
    ledger_path: Path = Path(".pinforge/runs.db")

    # CI trigger policy
    workflow_name: str = "Publish to cache"
    main_branch: str = "main"

    # Build behaviour
    allow_broken: bool = False
    command_timeout_seconds: int = 4 * 60 * 60
    smoke_timeout_seconds: int = 60

    # Toolchain distribution
    dist_server: str = "https://static.rust-lang.org"
    # Manifest hash used when the recipe does not pin one
    toolchain_hash: str = ""
    http_timeout_seconds: float = 30.0


# Module-level singleton; import as `from pinforge.config import settings`
settings = ForgeSettings()
