"""
Application configuration management.

Load order (each layer overrides the previous):
  1. ``config/default.toml``      — committed static defaults
  2. ``config/local.toml``        — optional local overrides (gitignored)
  3. ``.env``                     — local secrets and env overrides (gitignored)
  4. Environment variables        — ``HERO_TRACKER_*`` prefix

Entry point: ``load_config(config_path=None) -> AppConfig``

The orchestrator, the snapshot store and every CLI command receive an
``AppConfig`` instance (or one of its sections) — never raw dicts or
individual env var lookups scattered through the codebase.
"""

from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, field_validator

from hero_tracker.models.combination import (
    GameMode,
    InputDevice,
    Region,
    Tier,
    validate_map_slug,
)

# ── Sub-config models ─────────────────────────────────────────────────────────


class DatabaseConfig(BaseModel):
    """SQLite database connection settings."""

    model_config = ConfigDict(frozen=True)

    db_path: str = "data/db/hero_tracker.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 2000
    lock_retries: int = 5
    lock_retry_delay_ms: int = 500

    @field_validator("lock_retries")
    @classmethod
    def validate_lock_retries(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"lock_retries must be >= 1, got {v}.")
        return v


class ProviderConfig(BaseModel):
    """Remote rate provider settings."""

    model_config = ConfigDict(frozen=True)

    base_url: str = "https://overwatch.blizzard.com/en-us/rates/data/"
    timeout_s: float = 30.0
    user_agent: str = "hero-tracker/0.1 (+statistics snapshot collector)"
    use_fixture: bool = False


class ScrapeConfig(BaseModel):
    """Combination space and per-run pacing for the scrape orchestrator.

    ``materiality_threshold`` is expressed in percentage points. Leave it
    unset for hash-only deduplication.
    """

    model_config = ConfigDict(frozen=True)

    modes: list[GameMode] = list(GameMode)
    inputs: list[InputDevice] = list(InputDevice)
    regions: list[Region] = list(Region)
    tiers: list[Tier] = list(Tier)
    maps: list[str] = ["all-maps"]

    request_delay_ms: int = 2000
    max_attempts: int = 3
    base_delay_ms: int = 5000
    min_heroes: int = 30
    materiality_threshold: Optional[float] = None
    archive_raw: bool = False

    @field_validator("maps")
    @classmethod
    def validate_maps(cls, v: list[str]) -> list[str]:
        return [validate_map_slug(m) for m in v]

    @field_validator("max_attempts")
    @classmethod
    def validate_max_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"max_attempts must be >= 1, got {v}.")
        return v

    @field_validator("request_delay_ms", "base_delay_ms", "min_heroes")
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"Value must be non-negative, got {v}.")
        return v

    @field_validator("materiality_threshold")
    @classmethod
    def validate_threshold(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and v <= 0:
            raise ValueError(f"materiality_threshold must be > 0 when set, got {v}.")
        return v


class DataConfig(BaseModel):
    """Filesystem paths for raw archives and exports."""

    model_config = ConfigDict(frozen=True)

    raw_dir: str = "data/raw"
    export_dir: str = "data/exports"


class LoggingConfig(BaseModel):
    """Logging output settings."""

    model_config = ConfigDict(frozen=True)

    level: str = "INFO"
    log_file: str = "data/logs/hero_tracker.log"
    json_format: bool = False

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid:
            raise ValueError(f"Log level must be one of {sorted(valid)}, got '{v}'.")
        return v.upper()


class SchedulerConfig(BaseModel):
    """Scheduler daemon settings."""

    model_config = ConfigDict(frozen=True)

    interval_hours: float = 24.0

    @field_validator("interval_hours")
    @classmethod
    def validate_interval(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"interval_hours must be > 0, got {v}.")
        return v


class AppConfig(BaseModel):
    """Complete application configuration — the single source of truth.

    Constructed by ``load_config()`` which merges TOML + .env.
    """

    model_config = ConfigDict(frozen=True)

    database: DatabaseConfig = DatabaseConfig()
    provider: ProviderConfig = ProviderConfig()
    scrape: ScrapeConfig = ScrapeConfig()
    data: DataConfig = DataConfig()
    logging: LoggingConfig = LoggingConfig()
    scheduler: SchedulerConfig = SchedulerConfig()
    debug: bool = False


# ── Loader ────────────────────────────────────────────────────────────────────

_PROJECT_ROOT = Path(__file__).parent.parent


def _find_project_root() -> Path:
    """Walk up from this file to find the project root (contains pyproject.toml)."""
    candidate = Path(__file__).parent
    for _ in range(5):
        if (candidate / "pyproject.toml").exists():
            return candidate
        candidate = candidate.parent
    return _PROJECT_ROOT


def load_config(config_path: Optional[Path] = None) -> AppConfig:
    """Load and merge application configuration.

    Args:
        config_path: Explicit path to a TOML config file. Defaults to
            ``<project_root>/config/default.toml``.

    Returns:
        Fully validated ``AppConfig`` instance.

    Raises:
        FileNotFoundError: If the specified ``config_path`` does not exist.
        pydantic.ValidationError: If merged config values fail validation.
    """
    root = _find_project_root()

    # 1. Load .env file (silently skip if missing)
    load_dotenv(dotenv_path=root / ".env", override=False)

    # 2. Load TOML config
    if config_path is None:
        config_path = root / "config" / "default.toml"

    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Config file not found: {config_path}\n"
            "Create config/default.toml or pass --config explicitly."
        )

    with open(config_path, "rb") as f:
        raw: dict[str, Any] = tomllib.load(f)

    local_config_path = config_path.parent / "local.toml"
    if local_config_path.exists():
        with open(local_config_path, "rb") as f:
            local_raw: dict[str, Any] = tomllib.load(f)
        raw = _deep_merge(raw, local_raw)

    # 3. Apply HERO_TRACKER_* environment variable overrides
    raw = _apply_env_overrides(raw)

    # 4. Build and validate AppConfig
    return _build_app_config(raw)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge ``override`` into ``base``."""
    result = dict(base)
    for key, val in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(val, dict):
            result[key] = _deep_merge(result[key], val)
        else:
            result[key] = val
    return result


def _apply_env_overrides(raw: dict[str, Any]) -> dict[str, Any]:
    """Apply HERO_TRACKER_* env vars to the raw config dict.

    Supported overrides:
      HERO_TRACKER_DB_PATH      → raw["database"]["db_path"]
      HERO_TRACKER_LOG_LEVEL    → raw["logging"]["level"]
      HERO_TRACKER_USE_FIXTURE  → raw["provider"]["use_fixture"]
      HERO_TRACKER_DEBUG        → raw["debug"]
    """
    if db_path := os.environ.get("HERO_TRACKER_DB_PATH"):
        raw.setdefault("database", {})["db_path"] = db_path

    if log_level := os.environ.get("HERO_TRACKER_LOG_LEVEL"):
        raw.setdefault("logging", {})["level"] = log_level

    if use_fixture := os.environ.get("HERO_TRACKER_USE_FIXTURE"):
        raw.setdefault("provider", {})["use_fixture"] = _truthy(use_fixture)

    if debug := os.environ.get("HERO_TRACKER_DEBUG"):
        raw["debug"] = _truthy(debug)

    return raw


def _truthy(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes")


def _build_app_config(raw: dict[str, Any]) -> AppConfig:
    """Map raw TOML dict to ``AppConfig`` model structure."""
    project = raw.pop("project", {})

    return AppConfig(
        database=DatabaseConfig(**raw.get("database", {})),
        provider=ProviderConfig(**raw.get("provider", {})),
        scrape=ScrapeConfig(**raw.get("scrape", {})),
        data=DataConfig(**raw.get("data", {})),
        logging=LoggingConfig(**raw.get("logging", {})),
        scheduler=SchedulerConfig(**raw.get("scheduler", {})),
        debug=raw.get("debug", project.get("debug", False)),
    )
