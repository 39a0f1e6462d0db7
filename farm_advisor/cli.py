"""
Farm Advisor — CLI entry point.

All commands follow this pattern:
  1. Load ``AppConfig`` via ``load_config()``.
  2. Configure logging.
  3. Validate inputs.
  4. Execute the action (DB init, catalog check, service call).
  5. Report the result to stdout.

Install and run::

    pip install -e .
    farm-advisor --help
    farm-advisor init-db
    farm-advisor validate-config
    farm-advisor validate-catalog
    farm-advisor list --user u_123 --category CROP
    farm-advisor refresh --user u_123 --farm f_1
    farm-advisor explain --user u_123 <recommendation-id>
    farm-advisor feedback --user u_123 <recommendation-id> COMPLETED --rating 5
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Optional

import typer

app = typer.Typer(
    name="farm-advisor",
    help="Farm Advisor — rule-based decision support for Ghanaian farms.",
    add_completion=False,
)


# ── Helpers ───────────────────────────────────────────────────────────────────

def _load_config_or_exit(config_path: Optional[str] = None):
    """Load AppConfig, printing a friendly error and exiting on failure."""
    from farm_advisor.config import load_config

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
    from farm_advisor.utils.logging import configure_logging
    configure_logging(config.logging)


def _load_catalog_or_exit(config, rules_file: Optional[str] = None):
    from farm_advisor.catalog.loader import load_catalog
    from farm_advisor.config import resolve_path

    path = resolve_path(rules_file or config.catalog.rules_file)
    try:
        return load_catalog(path)
    except FileNotFoundError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)
    except ValueError as exc:
        typer.echo(f"[ERROR] Rule catalog invalid: {exc}", err=True)
        raise typer.Exit(code=1)


def _run_service(config_path: Optional[str], call) -> Any:
    """Open the DB, build the service, run ``call(service)``, report the result."""
    from farm_advisor.config import resolve_path
    from farm_advisor.db.connection import get_connection
    from farm_advisor.service import DecisionSupportService

    config = _load_config_or_exit(config_path)
    _configure_logging(config)
    catalog = _load_catalog_or_exit(config)

    with get_connection(
        resolve_path(config.database.db_path),
        wal_mode=config.database.wal_mode,
        busy_timeout_ms=config.database.busy_timeout_ms,
    ) as conn:
        result = call(DecisionSupportService(conn, catalog, config))

    if not result.ok:
        error = result.error
        typer.echo(f"[ERROR] {error.code}: {error.message}", err=True)
        for field, problem in error.fields.items():
            typer.echo(f"  {field}: {problem}", err=True)
        raise typer.Exit(code=1)
    return result.data


def _echo_json(model) -> None:
    typer.echo(json.dumps(model.model_dump(mode="json"), indent=2))


_USER_OPTION = typer.Option(..., "--user", "-u", help="Caller user id.")
_CONFIG_OPTION = typer.Option(None, "--config", help="Path to TOML config file.")


# ── Setup commands ────────────────────────────────────────────────────────────

@app.command("init-db")
def init_db(
    db_path: Optional[str] = typer.Option(
        None,
        "--db-path",
        help="Override DB path from config (e.g. data/db/test.db).",
    ),
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """Initialize the SQLite database and apply the full schema.

    Safe to run multiple times; all DDL uses IF NOT EXISTS.
    Also runs pending schema migrations.
    """
    from farm_advisor.config import resolve_path
    from farm_advisor.db.connection import get_connection
    from farm_advisor.db.migrations import run_migrations
    from farm_advisor.db.schema import ALL_TABLE_NAMES, apply_schema

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    target_path = resolve_path(db_path or config.database.db_path)
    typer.echo(f"Initializing database at: {target_path}")

    with get_connection(
        target_path,
        wal_mode=config.database.wal_mode,
        busy_timeout_ms=config.database.busy_timeout_ms,
    ) as conn:
        apply_schema(conn)
        migrations_applied = run_migrations(conn)

    typer.echo(f"  Tables: {len(ALL_TABLE_NAMES)} created/verified.")
    typer.echo(f"  Migrations applied: {migrations_applied}")
    typer.echo("[OK] Database ready.")


@app.command("validate-config")
def validate_config(
    config_path: Optional[str] = _CONFIG_OPTION,
    show_full: bool = typer.Option(False, "--full", help="Print full config as JSON."),
) -> None:
    """Validate the configuration file and print parsed values.

    Exits with code 1 if the config fails validation.
    """
    config = _load_config_or_exit(config_path)

    typer.echo("Configuration validated successfully.")
    typer.echo("")
    typer.echo(f"  Database path:     {config.database.db_path}")
    typer.echo(f"  Rules file:        {config.catalog.rules_file}")
    typer.echo(f"  Freshness window:  {config.engine.freshness_window_minutes} min")
    typer.echo(f"  Finance window:    {config.context.finance_window_days} days")
    typer.echo(f"  Weather provider:  {config.weather.provider}")
    typer.echo(f"  Log level:         {config.logging.level}")
    typer.echo(f"  Debug mode:        {config.debug}")

    if show_full:
        typer.echo("")
        typer.echo("Full config (JSON):")
        typer.echo(json.dumps(config.model_dump(), indent=2, default=str))

    typer.echo("")
    typer.echo("[OK] Config valid.")


@app.command("validate-catalog")
def validate_catalog(
    rules_file: Optional[str] = typer.Option(
        None,
        "--file",
        "-f",
        help="Rule file to check (defaults to catalog.rules_file).",
    ),
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """Load and validate the rule catalog, then list its rules."""
    config = _load_config_or_exit(config_path)
    _configure_logging(config)
    catalog = _load_catalog_or_exit(config, rules_file)

    typer.echo(f"Catalog: {catalog.source}")
    for rule in catalog.latest_rules():
        flag = "" if rule.is_active else "  (inactive)"
        typer.echo(
            f"  {rule.code:<32} v{rule.version}  {rule.category:<16} "
            f"prec={rule.precedence}{flag}"
        )
    typer.echo("")
    typer.echo(f"[OK] {len(catalog)} rule codes, {len(catalog.active_rules())} active.")


# ── Service commands ──────────────────────────────────────────────────────────

@app.command("list")
def list_recommendations(
    user_id: str = _USER_OPTION,
    farm_id: Optional[str] = typer.Option(None, "--farm", help="Farm scope."),
    category: Optional[str] = typer.Option(None, "--category", help="CROP, LIVESTOCK, ..."),
    priority: Optional[str] = typer.Option(None, "--priority", help="URGENT, HIGH, MEDIUM, LOW."),
    include_expired: bool = typer.Option(False, "--include-expired"),
    as_json: bool = typer.Option(False, "--json", help="Print the full page as JSON."),
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """List recommendations, regenerating them when the cached set is stale."""
    params = {
        "farm_id": farm_id,
        "category": category,
        "priority": priority,
        "include_expired": include_expired,
    }
    page = _run_service(config_path, lambda svc: svc.list(user_id, params))

    if as_json:
        _echo_json(page)
        return

    typer.echo(
        f"{len(page.recommendations)} recommendation(s) "
        f"[{page.source}, {page.generated_at:%Y-%m-%d %H:%M}Z]"
    )
    for rec in page.recommendations:
        typer.echo(
            f"  {rec.priority:<7} {rec.confidence:.2f}  {rec.category:<9} {rec.title}  ({rec.id})"
        )


@app.command("refresh")
def refresh(
    user_id: str = _USER_OPTION,
    farm_id: Optional[str] = typer.Option(None, "--farm", help="Farm scope."),
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """Force re-evaluation and replace the user's active recommendations."""
    result = _run_service(config_path, lambda svc: svc.refresh(user_id, {"farm_id": farm_id}))
    typer.echo(f"  Generated: {result.count}")
    typer.echo(f"  Expired:   {result.expired}")
    typer.echo(f"  Generation:{result.generation}")
    if result.failed_rules:
        typer.echo(f"  Skipped rules: {', '.join(result.failed_rules)}")
    typer.echo("[OK] Recommendations refreshed.")


@app.command("explain")
def explain(
    recommendation_id: str = typer.Argument(..., help="Recommendation id."),
    user_id: str = _USER_OPTION,
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """Explain why a recommendation was generated."""
    explanation = _run_service(
        config_path,
        lambda svc: svc.explain(user_id, {"recommendation_id": recommendation_id}),
    )
    _echo_json(explanation)


@app.command("feedback")
def feedback(
    recommendation_id: str = typer.Argument(..., help="Recommendation id."),
    feedback_type: str = typer.Argument(
        ..., help="HELPFUL, NOT_HELPFUL, COMPLETED, DISMISSED or INCORRECT."
    ),
    user_id: str = _USER_OPTION,
    rating: Optional[int] = typer.Option(None, "--rating", help="1-5."),
    comment: Optional[str] = typer.Option(None, "--comment"),
    action_taken: Optional[bool] = typer.Option(None, "--action-taken/--no-action-taken"),
    outcome_notes: Optional[str] = typer.Option(None, "--outcome"),
    config_path: Optional[str] = _CONFIG_OPTION,
) -> None:
    """Record feedback on a recommendation."""
    params = {
        "recommendation_id": recommendation_id,
        "feedback_type": feedback_type,
        "rating": rating,
        "comment": comment,
        "action_taken": action_taken,
        "outcome_notes": outcome_notes,
    }
    recorded = _run_service(config_path, lambda svc: svc.feedback(user_id, params))
    typer.echo(f"[OK] Feedback #{recorded.feedback_id} recorded ({recorded.feedback_type}).")


# ── Entry point ───────────────────────────────────────────────────────────────

if __name__ == "__main__":
    app()
