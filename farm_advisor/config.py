"""
Application configuration.

``load_config()`` builds one frozen ``AppConfig`` from up to four layers, each
overriding the one before:

  1. the TOML file passed in (``config/default.toml`` by default)
  2. ``local.toml`` beside it, if present (gitignored)
  3. ``.env`` at the project root (gitignored; only fills unset env vars)
  4. ``FARM_ADVISOR_*`` environment variables

The service facade and the CLI take an ``AppConfig``; nothing else reads the
environment.
"""

from __future__ import annotations

import os
import tomllib
from collections.abc import Callable
from pathlib import Path
from typing import Any, Literal, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, field_validator

# ── Sub-config models ─────────────────────────────────────────────────────────


class DatabaseConfig(BaseModel):
    """SQLite database connection settings."""

    model_config = ConfigDict(frozen=True)

    db_path: str = "data/db/farm_advisor.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000


class CatalogConfig(BaseModel):
    """Where the authored rule catalog lives."""

    model_config = ConfigDict(frozen=True)

    rules_file: str = "config/rules/ghana_rules_v1.json"


class EngineConfig(BaseModel):
    """Evaluation and lifecycle parameters."""

    model_config = ConfigDict(frozen=True)

    freshness_window_minutes: int = 60
    max_reasons: int = 5
    list_limit: int = 50
    feedback_history_limit: int = 100

    @field_validator("freshness_window_minutes", "max_reasons", "list_limit", "feedback_history_limit")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"must be >= 1, got {v}.")
        return v


class ContextConfig(BaseModel):
    """How much history the context builder pulls per evaluation."""

    model_config = ConfigDict(frozen=True)

    finance_window_days: int = 30
    activity_limit: int = 10
    health_record_limit: int = 20


class WeatherConfig(BaseModel):
    """Weather sub-source settings.

    ``provider = "store"`` reads the latest ``weather_snapshots`` row for the
    farm's region; ``"open_meteo"`` fetches a live forecast over HTTP.
    """

    model_config = ConfigDict(frozen=True)

    provider: Literal["store", "open_meteo"] = "store"
    base_url: str = "https://api.open-meteo.com/v1/forecast"
    timeout_seconds: float = 10.0
    forecast_days: int = 3


class LoggingConfig(BaseModel):
    """Log level, optional log file and line format."""

    model_config = ConfigDict(frozen=True)

    level: str = "INFO"
    log_file: Optional[str] = "data/logs/farm_advisor.log"
    json_format: bool = False

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid:
            raise ValueError(f"level must be one of {sorted(valid)}, got {v!r}.")
        return v.upper()


class AppConfig(BaseModel):
    """Every setting the advisor reads, grouped by concern."""

    model_config = ConfigDict(frozen=True)

    database: DatabaseConfig = DatabaseConfig()
    catalog: CatalogConfig = CatalogConfig()
    engine: EngineConfig = EngineConfig()
    context: ContextConfig = ContextConfig()
    weather: WeatherConfig = WeatherConfig()
    logging: LoggingConfig = LoggingConfig()
    debug: bool = False


# ── Loader ────────────────────────────────────────────────────────────────────

# env var -> (section, key, parse); section None means a top-level key.
_ENV_OVERRIDES: dict[str, tuple[Optional[str], str, Callable[[str], Any]]] = {
    "FARM_ADVISOR_DB_PATH": ("database", "db_path", str),
    "FARM_ADVISOR_LOG_LEVEL": ("logging", "level", str),
    "FARM_ADVISOR_DEBUG": (None, "debug", lambda v: v.lower() in ("1", "true", "yes")),
    "FARM_ADVISOR_RULES_FILE": ("catalog", "rules_file", str),
    "FARM_ADVISOR_WEATHER_PROVIDER": ("weather", "provider", str.lower),
}


def project_root() -> Path:
    """Nearest ancestor of this package that holds ``pyproject.toml``."""
    here = Path(__file__).resolve().parent
    for candidate in (here, *here.parents):
        if (candidate / "pyproject.toml").is_file():
            return candidate
    return here.parent


def resolve_path(path: str) -> Path:
    """Resolve a config-relative path against the project root."""
    p = Path(path)
    return p if p.is_absolute() else project_root() / p


def load_config(config_path: Optional[Path] = None) -> AppConfig:
    """Load and merge application configuration.

    Args:
        config_path: TOML file to start from. Defaults to
            ``<project_root>/config/default.toml``.  A ``local.toml`` in the
            same directory is merged over it.

    Raises:
        FileNotFoundError: ``config_path`` does not exist.
        pydantic.ValidationError: Merged values fail validation.
    """
    root = project_root()
    load_dotenv(dotenv_path=root / ".env", override=False)

    path = Path(config_path) if config_path is not None else root / "config" / "default.toml"
    if not path.exists():
        raise FileNotFoundError(
            f"Config file not found: {path}\n"
            "Create config/default.toml or pass --config."
        )

    raw = _read_toml(path)
    local = path.parent / "local.toml"
    if local.exists():
        raw = _merge(raw, _read_toml(local))

    for env_var, (section, key, parse) in _ENV_OVERRIDES.items():
        value = os.environ.get(env_var)
        if value:
            target = raw.setdefault(section, {}) if section else raw
            target[key] = parse(value)

    project = raw.pop("project", {})
    raw.setdefault("debug", project.get("debug", False))
    return AppConfig.model_validate(raw)


def _read_toml(path: Path) -> dict[str, Any]:
    with path.open("rb") as f:
        return tomllib.load(f)


def _merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        merged[key] = (
            _merge(current, value)
            if isinstance(current, dict) and isinstance(value, dict)
            else value
        )
    return merged
