"""CLI commands for inspecting task configuration files."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ..orchestrator.config import ConfigurationManager, ManagerConfig, load_task_definitions
from ..orchestrator.exceptions import ConfigurationError, CronExpressionError
from ..orchestrator.models import CronTrigger, IngestionTaskDefinition, trigger_to_dict
from ..orchestrator.triggers import ensure_aware, evaluate_cron, next_fire_time

console = Console()
tasks_app = typer.Typer(help="Inspect ingestion task configuration")


def _load(config_path: Path) -> ManagerConfig:
    if not config_path.exists():
        console.print(f"[red]Configuration file not found: {config_path}[/red]")
        raise typer.Exit(1)
    try:
        return ConfigurationManager(config_path).load()
    except ConfigurationError as exc:
        console.print(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(1) from exc


def _reference_time(at: Optional[str], config: ManagerConfig) -> datetime:
    if at is None:
        return datetime.now(timezone.utc)
    try:
        return ensure_aware(datetime.fromisoformat(at), config.cron.tz)
    except ValueError as exc:
        console.print(f"[red]Invalid --at time '{at}': expected ISO 8601[/red]")
        raise typer.Exit(2) from exc


def _describe_trigger(task: IngestionTaskDefinition) -> str:
    trigger = trigger_to_dict(task.trigger)
    if trigger["type"] == "cron":
        return f"cron {trigger['expression']}"
    if trigger["type"] == "webhook":
        return f"webhook {trigger['endpoint_id']}"
    return "manual"


def _next_run(task: IngestionTaskDefinition, reference: datetime, config: ManagerConfig) -> Optional[datetime]:
    if not task.enabled or not isinstance(task.trigger, CronTrigger):
        return None
    return next_fire_time(task.trigger.expression, reference, config.cron.tz)


@tasks_app.command("validate")
def validate_tasks(
    config_path: Path = typer.Argument(..., help="Path to harvester YAML configuration"),
) -> None:
    """Validate a configuration file and report every error."""
    errors = ConfigurationManager(config_path).validate(config_path)
    if errors:
        console.print(f"[red]Configuration invalid ({len(errors)} errors):[/red]")
        for error in errors:
            console.print(f"  - {escape(error)}")
        raise typer.Exit(1)

    config = ConfigurationManager(config_path).load()
    console.print(f"[green]Configuration valid: {len(config.tasks)} tasks[/green]")


@tasks_app.command("list")
def list_tasks(
    config_path: Path = typer.Argument(..., help="Path to harvester YAML configuration"),
    at: Optional[str] = typer.Option(None, "--at", help="Reference time for next runs (ISO 8601)"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """List configured tasks with their triggers and next cron run."""
    config = _load(config_path)
    reference = _reference_time(at, config)
    tasks = load_task_definitions(config)

    rows = []
    for task in tasks:
        next_run = _next_run(task, reference, config)
        rows.append(
            {
                "id": task.id,
                "name": task.name,
                "trigger": trigger_to_dict(task.trigger),
                "source": task.source.plugin_type,
                "destination": task.destination.plugin_type if task.destination else None,
                "enabled": task.enabled,
                "next_run": next_run.isoformat() if next_run else None,
            }
        )

    if json_output:
        typer.echo(json.dumps(rows, indent=2))
        return

    if not rows:
        console.print("[yellow]No tasks configured[/yellow]")
        return

    table = Table(title=f"Ingestion Tasks ({len(rows)} total)")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Name")
    table.add_column("Trigger")
    table.add_column("Source")
    table.add_column("Destination")
    table.add_column("Enabled")
    table.add_column("Next Run")
    for task, row in zip(tasks, rows):
        table.add_row(
            row["id"] or "<generated>",
            row["name"],
            _describe_trigger(task),
            row["source"],
            row["destination"] or "-",
            "[green]yes[/green]" if row["enabled"] else "[red]no[/red]",
            row["next_run"] or "-",
        )
    console.print(table)


@tasks_app.command("due")
def due_tasks(
    config_path: Path = typer.Argument(..., help="Path to harvester YAML configuration"),
    at: Optional[str] = typer.Option(None, "--at", help="Reference time (ISO 8601, default now)"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """Show which enabled cron tasks would fire at the reference time.

    Evaluated as if no task had run yet, since run history lives only in
    a running manager.
    """
    config = _load(config_path)
    reference = _reference_time(at, config)

    results: List[dict] = []
    for task in load_task_definitions(config):
        if not task.enabled or not isinstance(task.trigger, CronTrigger):
            continue
        try:
            evaluation = evaluate_cron(
                task.trigger.expression,
                reference,
                None,
                window=config.cron.due_window,
                tz=config.cron.tz,
            )
        except CronExpressionError as exc:
            results.append({"id": task.id, "expression": task.trigger.expression, "error": str(exc)})
            continue
        results.append(
            {
                "id": task.id,
                "expression": task.trigger.expression,
                "slot": evaluation.slot.isoformat(),
                "due": evaluation.due,
            }
        )

    if json_output:
        typer.echo(json.dumps({"reference_time": reference.isoformat(), "tasks": results}, indent=2))
        return

    if not results:
        console.print("[yellow]No enabled cron tasks configured[/yellow]")
        return

    table = Table(title=f"Cron tasks at {reference.isoformat()}")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Expression")
    table.add_column("Due Slot")
    table.add_column("Due")
    for result in results:
        if "error" in result:
            table.add_row(result["id"] or "<generated>", result["expression"], f"[red]{escape(result['error'])}[/red]", "-")
            continue
        table.add_row(
            result["id"] or "<generated>",
            result["expression"],
            result["slot"],
            "[green]yes[/green]" if result["due"] else "no",
        )
    console.print(table)


__all__ = ["tasks_app"]
