"""
Sub-object commands.

Units are the per-object source parts found by discovery. Each one is
migrated, checked and activated on its own and can be excluded by hand.
"""

import click

from abap_migration.cli.context import MigrationContext
from abap_migration.cli.decorators import handle_errors, pass_context, requires_config
from abap_migration.cli.utils import echo_success, format_status, print_table
from abap_migration.client.exceptions import StateError


@click.group(name="units")
def units() -> None:
    """Inspect and include or exclude a project's sub-objects."""
    pass


@units.command(name="list")
@click.argument("project_id")
@click.option("--pending", "pending_only", is_flag=True, help="Only show unfinished units")
@pass_context
@requires_config
@handle_errors
def list_units(ctx: MigrationContext, project_id: str, pending_only: bool) -> None:
    """List a project's sub-objects in migration order."""
    project = ctx.store.get_project(project_id)
    sub_objects = ctx.store.list_sub_objects(project.id)
    if pending_only:
        sub_objects = [s for s in sub_objects if not s.is_done and not s.excluded]

    if not sub_objects:
        click.echo("No sub-objects. Discovery runs on the first 'migrate start'.")
        return

    print_table(
        f"Sub-objects of {project.name}",
        ["ID", "Object", "Order", "Name", "Type", "Status", "Excluded", "Depends on"],
        [
            [
                s.id,
                s.parent_object_name,
                f"{s.object_order}.{s.order}",
                s.name,
                s.objtype,
                format_status(s.status),
                "yes" if s.excluded else "",
                ", ".join(s.depends_on or []),
            ]
            for s in sub_objects
        ],
    )


def _set_excluded(ctx: MigrationContext, project_id: str, unit_id: str, excluded: bool) -> None:
    unit = ctx.store.get_sub_object(unit_id)
    if unit.project_id != project_id:
        raise StateError(f"Sub-object {unit_id} does not belong to project {project_id}")
    ctx.store.set_excluded(unit_id, excluded)
    action = "Excluded" if excluded else "Included"
    echo_success(f"{action} {unit.name} ({unit.parent_object_name})")


@units.command(name="exclude")
@click.argument("project_id")
@click.argument("unit_id")
@pass_context
@requires_config
@handle_errors
def exclude(ctx: MigrationContext, project_id: str, unit_id: str) -> None:
    """Skip a sub-object during migration."""
    _set_excluded(ctx, project_id, unit_id, True)


@units.command(name="include")
@click.argument("project_id")
@click.argument("unit_id")
@pass_context
@requires_config
@handle_errors
def include(ctx: MigrationContext, project_id: str, unit_id: str) -> None:
    """Migrate a previously excluded sub-object again."""
    _set_excluded(ctx, project_id, unit_id, False)
