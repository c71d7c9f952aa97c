"""
Migration run commands.

``start`` and ``resume`` run a project in the foreground and stream its
activity to the console. Ctrl+C requests a pause; the run stops at its next
checkpoint and can be resumed later.
"""

import asyncio
import contextlib
import signal

import click
from rich.text import Text

from abap_migration.cli.context import MigrationContext
from abap_migration.cli.decorators import handle_errors, pass_context, requires_config
from abap_migration.cli.utils import (
    console,
    echo_info,
    echo_warning,
    format_status,
    format_timestamp,
    print_table,
)
from abap_migration.migration.events import Event, Subscription
from abap_migration.migration.models import SUB_OBJECT_STATUSES
from abap_migration.utils.logging import get_logger

logger = get_logger(__name__)

ACTIVITY_STYLES = {
    "error": "red",
    "activate": "green",
    "write": "cyan",
    "fix": "yellow",
    "check": "magenta",
    "discovery": "blue",
    "user_message": "bold",
    "agent_message": "italic",
}


@click.group(name="migrate")
def migrate() -> None:
    """Run, resume and monitor project migrations."""
    pass


def _print_event(event: Event) -> None:
    if event.type == "activity":
        style = ACTIVITY_STYLES.get(event.payload.get("type", ""), "white")
        console.print(Text(event.payload.get("content", ""), style=style))
    elif event.type == "project_status":
        console.print(f"Project status: {format_status(event.payload['status'])}")
    elif event.type == "discovery_complete":
        console.print(
            f"[bold]Discovery complete:[/bold] {event.payload['unit_count']} sub-objects "
            f"in {event.payload['object_count']} objects"
        )


async def _stream(subscription: Subscription) -> None:
    async for event in subscription:
        _print_event(event)


async def _run_in_foreground(ctx: MigrationContext, project_id: str) -> bool:
    orchestrator = ctx.orchestrator()
    subscription = ctx.broker.subscribe(project_id)
    printer = asyncio.create_task(_stream(subscription))
    loop = asyncio.get_running_loop()

    with contextlib.suppress(NotImplementedError):
        loop.add_signal_handler(signal.SIGINT, orchestrator.pause, project_id)
    try:
        return await orchestrator.start(project_id)
    finally:
        with contextlib.suppress(NotImplementedError):
            loop.remove_signal_handler(signal.SIGINT)
        printer.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await printer
        while not subscription.queue.empty():
            _print_event(subscription.queue.get_nowait())
        subscription.close()
        await ctx.aclose()


def _run_command(ctx: MigrationContext, project_id: str) -> None:
    project = ctx.store.get_project(project_id)
    echo_info(f"Migrating {project.name} ({project.objtype}), press Ctrl+C to pause")

    ran = asyncio.run(_run_in_foreground(ctx, project.id))
    if not ran:
        echo_warning("Nothing to do: project is already running or fully migrated.")
        return

    final = ctx.store.get_project(project.id)
    click.echo()
    console.print(f"Final status: {format_status(final.status)}")
    if final.status == "error":
        raise click.exceptions.Exit(1)


@migrate.command(name="start")
@click.argument("project_id")
@pass_context
@requires_config
@handle_errors
def start(ctx: MigrationContext, project_id: str) -> None:
    """Start a project's migration, discovering its objects on the first run.

    Examples:

        abap-bridge -c config.yaml migrate start 3f2a9c...
    """
    _run_command(ctx, project_id)


@migrate.command(name="resume")
@click.argument("project_id")
@pass_context
@requires_config
@handle_errors
def resume(ctx: MigrationContext, project_id: str) -> None:
    """Resume a paused or failed project from its first unfinished sub-object."""
    _run_command(ctx, project_id)


@migrate.command(name="status")
@click.argument("project_id")
@pass_context
@requires_config
@handle_errors
def status(ctx: MigrationContext, project_id: str) -> None:
    """Show a project's status and sub-object counts."""
    project = ctx.store.get_project(project_id)
    sub_objects = ctx.store.list_sub_objects(project.id)

    console.print(
        f"[bold]{project.name}[/bold] ({project.objtype}) "
        f"{project.source_system} -> {project.target_system}: {format_status(project.status)}"
    )
    if not sub_objects:
        click.echo("Not discovered yet.")
        return

    counts = {s: 0 for s in SUB_OBJECT_STATUSES}
    excluded = 0
    for sub_object in sub_objects:
        if sub_object.excluded:
            excluded += 1
        else:
            counts[sub_object.status] += 1

    rows = [[format_status(s), n] for s, n in counts.items() if n]
    rows.append(["excluded", excluded])
    rows.append(["total", len(sub_objects)])
    print_table("Sub-objects", ["Status", "Count"], rows)


@migrate.command(name="activity")
@click.argument("project_id")
@click.option("--unit", "unit_id", default=None, help="Only show one sub-object's activity")
@click.option("--limit", default=50, show_default=True, type=click.IntRange(1, 10000))
@pass_context
@requires_config
@handle_errors
def activity(ctx: MigrationContext, project_id: str, unit_id: str | None, limit: int) -> None:
    """Show recent activity, oldest first."""
    project = ctx.store.get_project(project_id)
    entries = ctx.store.list_activity(project.id, sub_object_id=unit_id, limit=limit)
    if not entries:
        click.echo("No activity recorded.")
        return

    for entry in reversed(entries):
        style = ACTIVITY_STYLES.get(entry.type, "white")
        line = Text(f"{format_timestamp(entry.timestamp)} ")
        line.append(f"{entry.type:<13}", style=style)
        line.append(f" {entry.content}")
        console.print(line)
