"""
Restaurant Demand Forecaster — CLI entry point.

All commands follow this pattern:
  1. Load ``AppConfig`` via ``load_config()``.
  2. Configure logging.
  3. Validate inputs.
  4. Execute action (DB init, training job, prediction, registry change).
  5. Report result to stdout; ``[ERROR]`` and exit code 1 on failure.

Install and run::

    pip install -e .
    demand-forecaster --help
    demand-forecaster init-db
    demand-forecaster validate-config
    demand-forecaster collect-features --days 7
    demand-forecaster train --restaurant r-123 --model-type ensemble
    demand-forecaster predict --restaurant r-123 --date 2026-10-17
    demand-forecaster rollback --restaurant r-123 --version 2
"""

from __future__ import annotations

import json
from datetime import date
from pathlib import Path
from typing import Optional

import typer

app = typer.Typer(
    name="demand-forecaster",
    help="Per-restaurant hourly demand forecaster: training, registry and jobs.",
    add_completion=False,
)


# ── Helpers ───────────────────────────────────────────────────────────────────

def _load_config_or_exit(config_path: Optional[str] = None):
    """Load AppConfig, printing a friendly error and exiting on failure."""
    from demand_forecaster.config import load_config

    try:
        cfg_path = Path(config_path) if config_path else None
        return load_config(cfg_path)
    except FileNotFoundError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)
    except Exception as exc:
        typer.echo(f"[ERROR] Config validation failed: {exc}", err=True)
        raise typer.Exit(code=1)


def _configure_logging(config):
    """Set up logging from config."""
    from demand_forecaster.utils.logging import configure_logging
    configure_logging(config.logging)


def _connect(config, db_path: Optional[str] = None):
    from demand_forecaster.db.connection import get_connection

    return get_connection(
        db_path or config.database.db_path,
        wal_mode=config.database.wal_mode,
        busy_timeout_ms=config.database.busy_timeout_ms,
    )


def _parse_date_or_exit(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        typer.echo(f"[ERROR] Invalid date '{value}'. Use YYYY-MM-DD.", err=True)
        raise typer.Exit(code=1)


def _report_job(result) -> None:
    """Print a ``JobResult`` and exit 1 when the job failed."""
    typer.echo(
        f"  job={result.job_type} | restaurants={result.restaurants_processed} | "
        f"models_trained={result.models_trained} | duration={result.duration_ms}ms"
    )
    for key, value in result.details.items():
        if isinstance(value, (list, dict)):
            typer.echo(f"  {key}: {json.dumps(value, default=str)}")
        else:
            typer.echo(f"  {key}: {value}")
    if result.errors:
        typer.echo(f"  {len(result.errors)} error(s):", err=True)
        for msg in result.errors[:10]:
            typer.echo(f"    - {msg}", err=True)
        if len(result.errors) > 10:
            typer.echo(f"    ... and {len(result.errors) - 10} more.", err=True)

    if not result.success:
        typer.echo(f"[ERROR] Job {result.job_type} failed.", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"[OK] Job {result.job_type} complete.")


def _run_job(config, job_type: str, **params) -> None:
    from demand_forecaster.pipeline.training_jobs import TrainingJobRunner

    with _connect(config) as conn:
        runner = TrainingJobRunner.from_config(conn, config)
        result = runner.run(job_type, **params)
    _report_job(result)


# ── Setup ─────────────────────────────────────────────────────────────────────

@app.command("init-db")
def init_db(
    db_path: Optional[str] = typer.Option(
        None,
        "--db-path",
        help="Override DB path from config (e.g. data/db/test.db).",
    ),
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        help="Path to TOML config file.",
    ),
) -> None:
    """Initialize the SQLite database and apply the full schema.

    Safe to run multiple times; all DDL uses IF NOT EXISTS.
    Also runs pending schema migrations.
    """
    from demand_forecaster.db.migrations import run_migrations
    from demand_forecaster.db.schema import ALL_TABLE_NAMES, apply_schema

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    target_path = db_path or config.database.db_path
    typer.echo(f"Initializing database at: {target_path}")

    with _connect(config, target_path) as conn:
        apply_schema(conn)
        migrations_applied = run_migrations(conn)

    typer.echo(f"  Tables: {len(ALL_TABLE_NAMES)} created/verified.")
    typer.echo(f"  Migrations applied: {migrations_applied}")
    typer.echo("[OK] Database ready.")


@app.command("validate-config")
def validate_config(
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        help="Path to TOML config file (default: config/default.toml).",
    ),
    show_full: bool = typer.Option(
        False,
        "--full",
        help="Print full config including all fields (API keys masked).",
    ),
) -> None:
    """Validate the configuration file and print parsed values.

    Exits with code 1 if the config fails validation.
    """
    config = _load_config_or_exit(config_path)
    providers = config.providers

    def _key_state(value: Optional[str]) -> str:
        return "set" if value else "not set"

    typer.echo("Configuration validated successfully.")
    typer.echo("")
    typer.echo(f"  Database path:      {config.database.db_path}")
    typer.echo(f"  Default model type: {config.training.default_model_type}")
    typer.echo(f"  Min training rows:  {config.training.min_data_points}")
    typer.echo(f"  Max model age:      {config.registry.max_model_age_days} days")
    typer.echo(f"  Redis URL:          {config.cache.redis_url or '(in-process cache)'}")
    typer.echo(f"  OpenWeather key:    {_key_state(providers.openweather_api_key)}")
    typer.echo(f"  PredictHQ key:      {_key_state(providers.predicthq_api_key)}")
    typer.echo(f"  Ticketmaster key:   {_key_state(providers.ticketmaster_api_key)}")
    typer.echo(f"  Log level:          {config.logging.level}")
    typer.echo(f"  Debug mode:         {config.debug}")

    if show_full:
        dump = config.model_dump()
        for name in ("openweather_api_key", "predicthq_api_key", "ticketmaster_api_key"):
            if dump["providers"].get(name):
                dump["providers"][name] = "***"
        typer.echo("")
        typer.echo("Full config (JSON):")
        typer.echo(json.dumps(dump, indent=2, default=str))

    typer.echo("")
    typer.echo("[OK] Config valid.")


# ── Jobs ──────────────────────────────────────────────────────────────────────

@app.command("train")
def train(
    restaurant_id: str = typer.Option(..., "--restaurant", help="Restaurant id to train."),
    model_type: Optional[str] = typer.Option(
        None,
        "--model-type",
        help="linear, gradient_boost or ensemble (default from config).",
    ),
    no_force: bool = typer.Option(
        False,
        "--no-force",
        help="Skip training when the registry says no retrain is needed.",
    ),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Train a new model version for one restaurant."""
    config = _load_config_or_exit(config_path)
    _configure_logging(config)
    typer.echo(f"train | restaurant={restaurant_id} | model_type={model_type or 'default'}")
    _run_job(
        config,
        "train-model",
        restaurant_id=restaurant_id,
        model_type=model_type,
        force_retrain=not no_force,
    )


@app.command("retrain-if-needed")
def retrain_if_needed(
    restaurant_id: str = typer.Option(..., "--restaurant", help="Restaurant id to check."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Retrain one restaurant only if its ACTIVE model is stale or drifting."""
    config = _load_config_or_exit(config_path)
    _configure_logging(config)
    typer.echo(f"retrain-if-needed | restaurant={restaurant_id}")
    _run_job(config, "retrain-if-needed", restaurant_id=restaurant_id)


@app.command("train-all")
def train_all(
    force: bool = typer.Option(False, "--force", help="Train every restaurant unconditionally."),
    model_type: Optional[str] = typer.Option(None, "--model-type", help="Model type for forced runs."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Train (or retrain-check) every forecasting-enabled restaurant."""
    config = _load_config_or_exit(config_path)
    _configure_logging(config)
    typer.echo(f"train-all | force={force}")
    _run_job(config, "train-all", force_retrain=force, model_type=model_type)


@app.command("collect-features")
def collect_features(
    days: Optional[int] = typer.Option(
        None,
        "--days",
        min=1,
        help="Days to collect, counting back from yesterday (default from config).",
    ),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Store raw feature snapshots for recent days.

    \b
    Credential setup (.env, gitignored):
      OPENWEATHER_API_KEY=...   enables live weather features
      PREDICTHQ_API_KEY=...     enables PredictHQ events
      TICKETMASTER_API_KEY=...  enables Ticketmaster events

    Without credentials weather and event features use neutral defaults.
    """
    config = _load_config_or_exit(config_path)
    _configure_logging(config)
    typer.echo(f"collect-features | days={days or config.jobs.collect_days}")
    _run_job(config, "collect-features", days=days)


@app.command("evaluate-models")
def evaluate_models(
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Evaluate every ACTIVE model and list retraining candidates."""
    config = _load_config_or_exit(config_path)
    _configure_logging(config)
    typer.echo("evaluate-models")
    _run_job(config, "evaluate-models")


@app.command("cleanup")
def cleanup(
    keep: Optional[int] = typer.Option(
        None,
        "--keep",
        min=1,
        help="Model versions to keep per restaurant (default from config).",
    ),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Delete expired cached events and prune old model versions."""
    config = _load_config_or_exit(config_path)
    _configure_logging(config)
    typer.echo(f"cleanup | keep={keep or config.registry.keep_versions}")
    _run_job(config, "cleanup", keep=keep)


# ── Models ────────────────────────────────────────────────────────────────────

@app.command("predict")
def predict(
    restaurant_id: str = typer.Option(..., "--restaurant", help="Restaurant id."),
    target_date: str = typer.Option(..., "--date", help="Forecast date (YYYY-MM-DD)."),
    hour: Optional[int] = typer.Option(
        None,
        "--hour",
        min=0,
        max=23,
        help="Single hour slot; all 24 hours when omitted.",
    ),
    as_json: bool = typer.Option(False, "--json", help="Print results as JSON."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Forecast hourly dine-in and delivery demand with the ACTIVE model."""
    from demand_forecaster.errors import DemandForecasterError
    from demand_forecaster.ml.predictor import Predictor
    from demand_forecaster.pipeline.training_jobs import TrainingJobRunner

    config = _load_config_or_exit(config_path)
    _configure_logging(config)
    day = _parse_date_or_exit(target_date)

    with _connect(config) as conn:
        runner = TrainingJobRunner.from_config(conn, config)
        predictor = Predictor(conn, runner.registry, runner.feature_engineer)
        try:
            results = predictor.predict(restaurant_id, day, hour)
        except DemandForecasterError as exc:
            typer.echo(f"[ERROR] {exc}", err=True)
            raise typer.Exit(code=1)

    if as_json:
        typer.echo(json.dumps([r.model_dump(mode="json") for r in results], indent=2))
        return

    typer.echo(f"predict | restaurant={restaurant_id} | date={day}")
    typer.echo(f"  {'Hour':>4}  {'Dine-in':>7}  {'Delivery':>8}  {'Interval':>15}  Conf")
    for r in results:
        interval = f"{r.dine_in_interval.lower:.1f}-{r.dine_in_interval.upper:.1f}"
        typer.echo(
            f"  {r.hour_slot:>4}  {r.predicted_dine_in:>7}  {r.predicted_delivery:>8}  "
            f"{interval:>15}  {r.confidence:.2f}"
        )
    if results:
        typer.echo(f"  model v{results[0].model_version} ({results[0].model_type})")
    typer.echo("[OK] Prediction complete.")


@app.command("rollback")
def rollback(
    restaurant_id: str = typer.Option(..., "--restaurant", help="Restaurant id."),
    version: int = typer.Option(..., "--version", min=1, help="Version to re-activate."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Re-activate an earlier model version (FAILED versions are refused)."""
    from demand_forecaster.errors import DemandForecasterError
    from demand_forecaster.registry.cache import build_external_cache
    from demand_forecaster.registry.model_registry import ModelRegistry

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    with _connect(config) as conn:
        registry = ModelRegistry(conn, config.registry, build_external_cache(config.cache))
        try:
            model = registry.rollback_model(restaurant_id, version)
        except DemandForecasterError as exc:
            typer.echo(f"[ERROR] {exc}", err=True)
            raise typer.Exit(code=1)

    typer.echo(f"  {restaurant_id}: v{model.version} ({model.model_type}) is now ACTIVE.")
    typer.echo("[OK] Rollback complete.")


@app.command("model-history")
def model_history(
    restaurant_id: str = typer.Option(..., "--restaurant", help="Restaurant id."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """List every stored model version for a restaurant, newest first."""
    from demand_forecaster.registry.model_registry import ModelRegistry

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    with _connect(config) as conn:
        history = ModelRegistry(conn, config.registry).get_model_history(restaurant_id)

    if not history:
        typer.echo(f"[ERROR] No models found for restaurant {restaurant_id}.", err=True)
        raise typer.Exit(code=1)

    def _fmt(value: Optional[float]) -> str:
        return f"{value:.2f}" if value is not None else "-"

    typer.echo(f"  {'Ver':>3}  {'Type':<14}  {'Status':<10}  {'MAE':>7}  {'MAPE':>7}  {'Rows':>6}  Trained")
    for h in history:
        typer.echo(
            f"  {h.version:>3}  {h.model_type.value:<14}  {h.status.value:<10}  "
            f"{_fmt(h.mae):>7}  {_fmt(h.mape):>7}  {h.data_points_used:>6}  "
            f"{h.trained_at:%Y-%m-%d %H:%M}"
        )
    typer.echo(f"[OK] {len(history)} version(s).")


@app.command("feature-importance")
def feature_importance(
    restaurant_id: str = typer.Option(..., "--restaurant", help="Restaurant id."),
    top: int = typer.Option(15, "--top", min=1, help="Number of features to show."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Show the ACTIVE model's most important features."""
    from demand_forecaster.errors import ModelNotFoundError
    from demand_forecaster.ml.predictor import Predictor
    from demand_forecaster.registry.model_registry import ModelRegistry

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    with _connect(config) as conn:
        predictor = Predictor(conn, ModelRegistry(conn, config.registry))
        try:
            ranked = predictor.get_feature_importance(restaurant_id)
        except ModelNotFoundError as exc:
            typer.echo(f"[ERROR] {exc}", err=True)
            raise typer.Exit(code=1)

    for item in ranked[:top]:
        typer.echo(f"  {item.feature:<28} {item.importance:.4f}")
    typer.echo("[OK] Feature importance listed.")


# ── Data ──────────────────────────────────────────────────────────────────────

@app.command("export-training-data")
def export_training_data(
    restaurant_id: str = typer.Option(..., "--restaurant", help="Restaurant id."),
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Parquet file to write (default: data/exports/training_<id>.parquet).",
    ),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Write the labeled, unnormalized feature matrix to Parquet."""
    from demand_forecaster.features.dataset_export import export_training_dataset

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    path = Path(output) if output else Path("data/exports") / f"training_{restaurant_id}.parquet"
    with _connect(config) as conn:
        rows = export_training_dataset(conn, restaurant_id, path)

    typer.echo(f"  Wrote {rows} row(s) to {path}")
    typer.echo("[OK] Export complete.")


if __name__ == "__main__":
    app()
