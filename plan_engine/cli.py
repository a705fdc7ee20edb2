"""Operator CLI for the plan materialization engine.

Runs the same code paths the backend calls: publish, materialize, unpublish,
duration normalization and status, against the configured DATABASE_URL.
"""

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from plan_engine.calendar.materializer import materialize
from plan_engine.config.settings import settings
from plan_engine.core.logger import setup_logger
from plan_engine.db.session import init_db
from plan_engine.errors import PlanEngineError
from plan_engine.plans.editing import normalize_plan_durations
from plan_engine.plans.publish import get_publish_status, publish_plan, unpublish_plan

console = Console()

app = typer.Typer(
    name="plan-engine",
    help="Plan materialization engine - publish plans and sync them to the calendar",
    add_completion=False,
)


@app.callback()
def main(debug: bool = typer.Option(False, "--debug", help="Enable debug logging")) -> None:
    """Configure logging before any command runs."""
    setup_logger(level="DEBUG" if debug else settings.log_level, log_file=settings.log_file)


def _fail(e: PlanEngineError) -> typer.Exit:
    console.print(f"[bold red]✗ {e.code}:[/bold red] {e.message}")
    for key, value in e.details.items():
        console.print(f"  [dim]{key}:[/dim] {value}")
    return typer.Exit(code=1)


@app.command("init-db")
def init_db_command() -> None:
    """Create the database schema."""
    init_db()
    console.print("[green]✓ Database schema created[/green]")


@app.command("materialize")
def materialize_command(
    plan_id: str = typer.Argument(..., help="Plan ID"),
    athlete_id: str | None = typer.Option(None, "--athlete-id", help="Owning athlete to enforce"),
    coach_id: str | None = typer.Option(None, "--coach-id", help="Owning coach to enforce"),
) -> None:
    """Write a published plan's sessions to the athlete calendar."""
    try:
        result = materialize(plan_id, athlete_id=athlete_id, coach_id=coach_id, actor=coach_id)
    except PlanEngineError as e:
        raise _fail(e) from e

    console.print(
        Panel(
            Text(f"Upserted {result.upserted_count}, soft-deleted {result.soft_deleted_count}", style="bold green"),
            title=f"Materialized {result.plan_id}",
            border_style="green",
        )
    )


@app.command("publish")
def publish_command(
    plan_id: str = typer.Argument(..., help="Plan ID"),
    coach_id: str = typer.Option(..., "--coach-id", help="Coach publishing the plan"),
    sync_calendar: bool = typer.Option(True, "--sync-calendar/--no-sync-calendar", help="Materialize after publishing"),
) -> None:
    """Publish a plan and (by default) materialize it."""
    try:
        result = publish_plan(plan_id, coach_id=coach_id)
        console.print(
            Panel(
                Text(result.summary_text),
                title="Published" if result.published else "Unchanged",
                subtitle=result.hash[:12],
                border_style="green" if result.published else "yellow",
            )
        )
        if sync_calendar:
            synced = materialize(plan_id, coach_id=coach_id, actor=coach_id)
            console.print(f"[green]✓ Calendar synced:[/green] {synced.upserted_count} upserted, {synced.soft_deleted_count} soft-deleted")
    except PlanEngineError as e:
        raise _fail(e) from e


@app.command("unpublish")
def unpublish_command(
    plan_id: str = typer.Argument(..., help="Plan ID"),
    coach_id: str = typer.Option(..., "--coach-id", help="Coach unpublishing the plan"),
) -> None:
    """Return a plan to draft and remove its sessions from the calendar."""
    try:
        result = unpublish_plan(plan_id, coach_id=coach_id)
    except PlanEngineError as e:
        raise _fail(e) from e

    if not result.was_published:
        console.print("[yellow]Plan was not published[/yellow]")
    console.print(f"[green]✓ Plan {result.plan_id} is a draft[/green] ({result.soft_deleted_count} entries soft-deleted)")


@app.command("normalize")
def normalize_command(
    plan_id: str = typer.Argument(..., help="Plan ID"),
    coach_id: str | None = typer.Option(None, "--coach-id", help="Owning coach to enforce"),
) -> None:
    """Round and rebalance session durations week by week."""
    try:
        changed = normalize_plan_durations(plan_id, coach_id=coach_id)
    except PlanEngineError as e:
        raise _fail(e) from e

    if not changed:
        console.print("[green]✓ Durations already normalized[/green]")
        return

    table = Table(title=f"Normalized durations ({len(changed)} sessions)")
    table.add_column("Session")
    table.add_column("Minutes", justify="right")
    for session_id, minutes in changed.items():
        table.add_row(session_id, str(minutes))
    console.print(table)


@app.command("status")
def status_command(plan_id: str = typer.Argument(..., help="Plan ID")) -> None:
    """Show a plan's publish state."""
    try:
        status = get_publish_status(plan_id)
    except PlanEngineError as e:
        raise _fail(e) from e

    table = Table(show_header=False)
    table.add_row("Plan", status.plan_id)
    table.add_row("Status", str(status.status))
    table.add_row("Published at", status.published_at.isoformat() if status.published_at else "-")
    table.add_row("Published by", status.published_by or "-")
    table.add_row("Hash", (status.last_published_hash or "-")[:12])
    table.add_row("Last summary", status.last_published_summary or "-")
    console.print(table)


if __name__ == "__main__":
    app()
