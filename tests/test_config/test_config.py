"""
Tests for configuration loading and validation.

What we test
------------
1. The committed config/default.toml loads and matches the model defaults.
2. local.toml beside the config file is deep-merged on top.
3. DEMAND_FORECASTER_* and provider-key environment overrides.
4. Missing files and invalid values are rejected.
"""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from demand_forecaster.config import (
    AppConfig,
    LoggingConfig,
    RegistryConfig,
    TrainingConfig,
    load_config,
)

_ENV_VARS = (
    "DEMAND_FORECASTER_DB_PATH",
    "DEMAND_FORECASTER_LOG_LEVEL",
    "DEMAND_FORECASTER_DEBUG",
    "DEMAND_FORECASTER_REDIS_URL",
    "OPENWEATHER_API_KEY",
    "PREDICTHQ_API_KEY",
    "TICKETMASTER_API_KEY",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def _write(path: Path, text: str) -> Path:
    path.write_text(text, encoding="utf-8")
    return path


def test_default_toml_matches_model_defaults():
    config = load_config()
    defaults = AppConfig()
    assert config.training == defaults.training
    assert config.registry == defaults.registry
    assert config.features == defaults.features
    assert config.cache.redis_url == ""
    assert config.debug is False


def test_local_toml_is_merged(tmp_path):
    cfg = _write(tmp_path / "app.toml", '[training]\nnum_trees = 20\nmax_depth = 3\n')
    _write(tmp_path / "local.toml", '[training]\nnum_trees = 80\n')

    config = load_config(cfg)
    assert config.training.num_trees == 80
    assert config.training.max_depth == 3


def test_env_overrides(tmp_path, monkeypatch):
    cfg = _write(tmp_path / "app.toml", '[database]\ndb_path = "from-file.db"\n')
    monkeypatch.setenv("DEMAND_FORECASTER_DB_PATH", "from-env.db")
    monkeypatch.setenv("DEMAND_FORECASTER_LOG_LEVEL", "debug")
    monkeypatch.setenv("DEMAND_FORECASTER_DEBUG", "true")
    monkeypatch.setenv("DEMAND_FORECASTER_REDIS_URL", "redis://cache:6379/1")
    monkeypatch.setenv("OPENWEATHER_API_KEY", "ow")
    monkeypatch.setenv("PREDICTHQ_API_KEY", "phq")

    config = load_config(cfg)
    assert config.database.db_path == "from-env.db"
    assert config.logging.level == "DEBUG"
    assert config.debug is True
    assert config.cache.redis_url == "redis://cache:6379/1"
    assert config.providers.openweather_api_key == "ow"
    assert config.providers.predicthq_api_key == "phq"
    assert config.providers.ticketmaster_api_key is None


def test_project_debug_flag(tmp_path):
    cfg = _write(tmp_path / "app.toml", "[project]\ndebug = true\n")
    assert load_config(cfg).debug is True


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "nope.toml")


def test_invalid_value_in_file(tmp_path):
    cfg = _write(tmp_path / "app.toml", '[training]\ndefault_model_type = "neural"\n')
    with pytest.raises(ValidationError):
        load_config(cfg)


# ── Section validation ────────────────────────────────────────────────────────

@pytest.mark.parametrize(
    "kwargs",
    [
        {"subsample_ratio": 0.0},
        {"subsample_ratio": 1.5},
        {"num_trees": 0},
        {"learning_rate": 0.0},
        {"regularization": -0.1},
        {"default_model_type": "forest"},
    ],
)
def test_training_config_rejects(kwargs):
    with pytest.raises(ValidationError):
        TrainingConfig(**kwargs)


def test_training_config_normalizes_model_type():
    config = TrainingConfig(default_model_type="Gradient_Boost", min_training_days=10)
    assert config.default_model_type == "gradient_boost"
    assert config.min_data_points == 240


def test_registry_keep_versions_must_be_positive():
    with pytest.raises(ValidationError):
        RegistryConfig(keep_versions=0)


def test_log_level_validated():
    assert LoggingConfig(level="warning").level == "WARNING"
    with pytest.raises(ValidationError):
        LoggingConfig(level="loud")
