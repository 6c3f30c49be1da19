"""Typer CLI entrypoint for outbox dispatch and flow authoring checks."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import typer
import yaml
from pydantic import ValidationError

from .config import ConfigManager
from .container import FlowScreenContainer, create_container
from .core.validation import validate_flow
from .dispatch import AuditLogger
from .errors import WebhookNotConfiguredError
from .logging import configure_logging
from .schemas.flow import load_flow_document
from .storage import SqlStore

app = typer.Typer(help="Recruiting flow and webhook outbox CLI.")


def _build_container(config: Optional[Path], log_level: str) -> FlowScreenContainer:
    configure_logging(log_level)
    try:
        app_config = ConfigManager().resolve(config)
    except (ValueError, ValidationError) as exc:
        raise typer.BadParameter(str(exc), param_name="config") from exc
    return create_container(settings=app_config)


@app.command()
def dispatch(
    config: Optional[Path] = typer.Option(None, exists=True, readable=True, dir_okay=False, help="YAML config path."),
    log_level: str = typer.Option("INFO", help="Log level for structured logging."),
    audit_log: Optional[Path] = typer.Option(None, dir_okay=False, help="Delivery audit log output (JSONL)."),
) -> None:
    """Deliver due outbox items to the webhook target once."""
    container = _build_container(config, log_level)
    audit_logger = AuditLogger(audit_log) if audit_log else None
    dispatcher = container.dispatcher(audit_logger=audit_logger)
    try:
        report = dispatcher.dispatch()
    except WebhookNotConfiguredError:
        typer.echo("webhook_target_not_configured: set WEBHOOK_TARGET_URL or webhook.target_url", err=True)
        raise typer.Exit(code=2)
    typer.echo(json.dumps(report.to_dict()))


@app.command()
def pending(
    config: Optional[Path] = typer.Option(None, exists=True, readable=True, dir_okay=False, help="YAML config path."),
    log_level: str = typer.Option("INFO", help="Log level for structured logging."),
    limit: int = typer.Option(100, min=1, help="Maximum number of items to print."),
) -> None:
    """Print pending outbox items as JSON."""
    container = _build_container(config, log_level)
    items = container.outbox().list_pending(limit=limit)
    typer.echo(json.dumps([item.model_dump(mode="json") for item in items], ensure_ascii=False, indent=2))


@app.command("validate-flow")
def validate_flow_command(
    path: Path = typer.Argument(..., exists=True, readable=True, dir_okay=False, help="Flow YAML or JSON file."),
    log_level: str = typer.Option("INFO", help="Log level for structured logging."),
) -> None:
    """Check a flow document before publishing it."""
    configure_logging(log_level)
    try:
        flow, rules = load_flow_document(path)
    except (ValidationError, ValueError, yaml.YAMLError) as exc:
        typer.echo(f"invalid flow document: {exc}", err=True)
        raise typer.Exit(code=1)

    issues = validate_flow(flow, rules)
    for issue in issues:
        typer.echo(f"{issue.severity}: {issue}")
    errors = [issue for issue in issues if issue.severity == "error"]
    if errors:
        raise typer.Exit(code=1)
    typer.echo(f"OK: {len(flow.nodes)} nodes, {len(flow.edges)} edges, {len(issues)} warnings.")


@app.command("init-db")
def init_db(
    config: Optional[Path] = typer.Option(None, exists=True, readable=True, dir_okay=False, help="YAML config path."),
    log_level: str = typer.Option("INFO", help="Log level for structured logging."),
) -> None:
    """Create the SQL tables for the configured database."""
    container = _build_container(config, log_level)
    store = container.store()
    if not isinstance(store, SqlStore):
        typer.echo("storage backend is not sql; nothing to initialize", err=True)
        raise typer.Exit(code=1)
    store.create_schema()
    typer.echo("Database schema created.")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
