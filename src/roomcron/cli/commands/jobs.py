"""Persisted job commands.

These work on the brain directly and are meant for operators: a running bot
only notices a removed record on its next sync.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Annotated

import typer

from roomcron.cli.console import console, dim, error, success, warning
from roomcron.config import RoomcronConfig
from roomcron.scheduling import (
    CorruptRecord,
    Job,
    JobStore,
    JsonFileBrain,
    Namespace,
    PersistenceError,
)
from roomcron.scheduling.registry import id_sort_key

app = typer.Typer(
    name="jobs",
    help="Inspect persisted reminders and schedules.",
    no_args_is_help=True,
)


class NamespaceChoice(str, Enum):
    reminders = "reminders"
    schedules = "schedules"

    @property
    def namespace(self) -> Namespace:
        if self is NamespaceChoice.reminders:
            return Namespace.REMINDERS
        return Namespace.SCHEDULES


NamespaceOption = Annotated[
    NamespaceChoice,
    typer.Option("--namespace", "-n", help="Job class to operate on"),
]


def register(root: typer.Typer) -> None:
    root.add_typer(app, name="jobs")


def format_countdown(next_fire: datetime | None, now: datetime | None = None) -> str:
    """Format a countdown string for the next fire time."""
    if next_fire is None:
        return "[dim]expired[/dim]"

    now = now or datetime.now(UTC)
    if next_fire <= now:
        return "[green]now[/green]"

    total_minutes = int((next_fire - now).total_seconds()) // 60
    if total_minutes < 60:
        return f"in {total_minutes}m"
    hours, minutes = divmod(total_minutes, 60)
    if hours < 24:
        return f"in {hours}h {minutes}m" if minutes else f"in {hours}h"
    days, hours = divmod(hours, 24)
    return f"in {days}d {hours}h" if hours else f"in {days}d"


def _store(ctx: typer.Context, choice: NamespaceChoice) -> JobStore:
    config: RoomcronConfig = ctx.obj or RoomcronConfig()
    return JobStore(JsonFileBrain(config.storage.brain_dir), choice.namespace)


@app.command("list")
def list_jobs(
    ctx: typer.Context,
    namespace: NamespaceOption = NamespaceChoice.reminders,
) -> None:
    """List persisted jobs."""
    from rich.table import Table

    try:
        records = _store(ctx, namespace).load()
    except PersistenceError as e:
        error(str(e))
        raise typer.Exit(1) from None

    if not records:
        warning(f"No {namespace.value} found")
        return

    table = Table(show_header=True)
    table.add_column("ID", style="dim")
    table.add_column("Type")
    table.add_column("Room")
    table.add_column("Owner")
    table.add_column("Pattern")
    table.add_column("Next Fire")
    table.add_column("Message")

    now = datetime.now(UTC)
    for job_id in sorted(records, key=id_sort_key):
        try:
            job = Job.deserialize(job_id, records[job_id])
        except CorruptRecord as e:
            table.add_row(job_id, "[red]corrupt[/red]", "", "", "", "", e.reason)
            continue
        message = job.message_template
        if len(message) > 40:
            message = message[:40] + "..."
        try:
            next_fire = job.next_fire(now)
        except Exception:
            next_fire = None
        table.add_row(
            job.id,
            job.kind.value,
            job.delivery_room,
            job.owner.name or job.owner.id,
            job.pattern,
            format_countdown(next_fire, now),
            message,
        )

    console.print(table)
    dim(f"Total: {len(records)} job(s)")


@app.command("cancel")
def cancel_job(
    ctx: typer.Context,
    job_id: Annotated[str, typer.Argument(help="Job id")],
    namespace: NamespaceOption = NamespaceChoice.reminders,
    force: Annotated[
        bool,
        typer.Option("--force", "-f", help="Remove without confirmation"),
    ] = False,
) -> None:
    """Remove a persisted job."""
    store = _store(ctx, namespace)
    try:
        records = store.load()
        if job_id not in records:
            error(f"No job found with ID {job_id}")
            raise typer.Exit(1)

        if not force and not typer.confirm(f"Remove job {job_id}?"):
            dim("Cancelled")
            return

        store.delete(job_id)
    except PersistenceError as e:
        error(str(e))
        raise typer.Exit(1) from None

    success(f"Removed job {job_id} from {namespace.value}")
