"""
Application configuration management.

Load order (each layer overrides the previous):
  1. ``config/default.toml``      — committed static defaults
  2. ``config/local.toml``        — optional local overrides (gitignored)
  3. ``.env``                     — provider API keys and env overrides (gitignored)
  4. Environment variables        — ``DEMAND_FORECASTER_*`` prefix, plus the
                                    provider keys ``OPENWEATHER_API_KEY``,
                                    ``PREDICTHQ_API_KEY``, ``TICKETMASTER_API_KEY``

Entry point: ``load_config(config_path=None) -> AppConfig``

Feature engineering, the trainer, the registry and the job runner all receive
an ``AppConfig`` (or one of its sections) — never raw dicts or env lookups
scattered through the codebase.
"""

from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, field_validator, model_validator

_VALID_MODEL_TYPES = frozenset({"linear", "gradient_boost", "ensemble"})

# ── Sub-config models ─────────────────────────────────────────────────────────


class DatabaseConfig(BaseModel):
    """SQLite database connection settings."""

    model_config = ConfigDict(frozen=True)

    db_path: str = "data/db/demand_forecaster.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000


class LoggingConfig(BaseModel):
    """Logging output settings."""

    model_config = ConfigDict(frozen=True)

    level: str = "INFO"
    log_file: str = "data/logs/forecaster.log"
    json_format: bool = False

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid:
            raise ValueError(f"Log level must be one of {sorted(valid)}, got '{v}'.")
        return v.upper()


class FeatureConfig(BaseModel):
    """Feature extraction parameters.

    ``event_radius_miles`` bounds which local events count toward a
    restaurant's event features. ``scaling_min_snapshots`` is the minimum
    history before learned scaling params replace the built-in defaults.
    """

    model_config = ConfigDict(frozen=True)

    event_radius_miles: float = 15.0
    lag_window_days: int = 28
    scaling_min_snapshots: int = 100
    scaling_cache_ttl_seconds: int = 86_400

    @field_validator("event_radius_miles")
    @classmethod
    def validate_radius(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"event_radius_miles must be > 0, got {v}.")
        return v


class ProviderConfig(BaseModel):
    """Weather / event provider credentials and call limits."""

    model_config = ConfigDict(frozen=True)

    openweather_api_key: Optional[str] = None
    predicthq_api_key: Optional[str] = None
    ticketmaster_api_key: Optional[str] = None
    timeout_seconds: float = 10.0
    weather_cache_ttl_seconds: int = 3600
    event_cache_ttl_seconds: int = 3600


class TrainingConfig(BaseModel):
    """Default hyperparameters for the three model families."""

    model_config = ConfigDict(frozen=True)

    learning_rate: float = 0.01
    max_iterations: int = 1000
    regularization: float = 0.01
    num_trees: int = 50
    max_depth: int = 4
    min_samples_leaf: int = 5
    subsample_ratio: float = 0.8
    min_training_days: int = 30
    default_model_type: str = "ensemble"
    random_seed: Optional[int] = None

    @field_validator("subsample_ratio")
    @classmethod
    def validate_subsample(cls, v: float) -> float:
        if not 0.0 < v <= 1.0:
            raise ValueError(f"subsample_ratio must be in (0.0, 1.0], got {v}.")
        return v

    @field_validator("default_model_type")
    @classmethod
    def validate_model_type(cls, v: str) -> str:
        v = v.lower()
        if v not in _VALID_MODEL_TYPES:
            raise ValueError(
                f"default_model_type must be one of {sorted(_VALID_MODEL_TYPES)}, got '{v}'."
            )
        return v

    @model_validator(mode="after")
    def validate_positive(self) -> "TrainingConfig":
        for name in ("max_iterations", "num_trees", "max_depth", "min_samples_leaf", "min_training_days"):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be >= 1, got {getattr(self, name)}.")
        if self.learning_rate <= 0:
            raise ValueError(f"learning_rate must be > 0, got {self.learning_rate}.")
        if self.regularization < 0:
            raise ValueError(f"regularization must be >= 0, got {self.regularization}.")
        return self

    @property
    def min_data_points(self) -> int:
        """Hourly rows required before a model may be trained."""
        return self.min_training_days * 24


class RegistryConfig(BaseModel):
    """Model registry cache and retraining thresholds."""

    model_config = ConfigDict(frozen=True)

    cache_ttl_seconds: int = 3600
    max_model_age_days: int = 14
    mae_degradation_threshold: float = 0.2
    improvement_threshold: float = -0.1
    max_predictions_before_retrain: int = 10_000
    keep_versions: int = 5

    @field_validator("keep_versions")
    @classmethod
    def validate_keep(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"keep_versions must be >= 1, got {v}.")
        return v


class CacheConfig(BaseModel):
    """External cache tier. Empty ``redis_url`` selects the in-process cache."""

    model_config = ConfigDict(frozen=True)

    redis_url: str = ""


class JobsConfig(BaseModel):
    """Defaults for the scheduler-invoked training jobs."""

    model_config = ConfigDict(frozen=True)

    collect_days: int = 1


class AppConfig(BaseModel):
    """Complete application configuration — the single source of truth.

    Constructed by ``load_config()`` which merges TOML + .env + env vars.
    """

    model_config = ConfigDict(frozen=True)

    database: DatabaseConfig = DatabaseConfig()
    logging: LoggingConfig = LoggingConfig()
    features: FeatureConfig = FeatureConfig()
    providers: ProviderConfig = ProviderConfig()
    training: TrainingConfig = TrainingConfig()
    registry: RegistryConfig = RegistryConfig()
    cache: CacheConfig = CacheConfig()
    jobs: JobsConfig = JobsConfig()
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

    # 3. Apply DEMAND_FORECASTER_* and provider-key overrides
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
    """Apply environment variables to the raw config dict.

    Supported overrides:
      DEMAND_FORECASTER_DB_PATH    → raw["database"]["db_path"]
      DEMAND_FORECASTER_LOG_LEVEL  → raw["logging"]["level"]
      DEMAND_FORECASTER_DEBUG      → raw["debug"]
      DEMAND_FORECASTER_REDIS_URL  → raw["cache"]["redis_url"]
      OPENWEATHER_API_KEY          → raw["providers"]["openweather_api_key"]
      PREDICTHQ_API_KEY            → raw["providers"]["predicthq_api_key"]
      TICKETMASTER_API_KEY         → raw["providers"]["ticketmaster_api_key"]
    """
    if db_path := os.environ.get("DEMAND_FORECASTER_DB_PATH"):
        raw.setdefault("database", {})["db_path"] = db_path

    if log_level := os.environ.get("DEMAND_FORECASTER_LOG_LEVEL"):
        raw.setdefault("logging", {})["level"] = log_level

    if debug := os.environ.get("DEMAND_FORECASTER_DEBUG"):
        raw["debug"] = debug.lower() in ("1", "true", "yes")

    if redis_url := os.environ.get("DEMAND_FORECASTER_REDIS_URL"):
        raw.setdefault("cache", {})["redis_url"] = redis_url

    for env_name, key in (
        ("OPENWEATHER_API_KEY", "openweather_api_key"),
        ("PREDICTHQ_API_KEY", "predicthq_api_key"),
        ("TICKETMASTER_API_KEY", "ticketmaster_api_key"),
    ):
        if value := os.environ.get(env_name):
            raw.setdefault("providers", {})[key] = value

    return raw


def _build_app_config(raw: dict[str, Any]) -> AppConfig:
    """Map raw TOML dict to ``AppConfig`` model structure."""
    project = raw.pop("project", {})

    return AppConfig(
        database=DatabaseConfig(**raw.get("database", {})),
        logging=LoggingConfig(**raw.get("logging", {})),
        features=FeatureConfig(**raw.get("features", {})),
        providers=ProviderConfig(**raw.get("providers", {})),
        training=TrainingConfig(**raw.get("training", {})),
        registry=RegistryConfig(**raw.get("registry", {})),
        cache=CacheConfig(**raw.get("cache", {})),
        jobs=JobsConfig(**raw.get("jobs", {})),
        debug=raw.get("debug", project.get("debug", False)),
    )
