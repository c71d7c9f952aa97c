"""
Project management commands.

A project names one root ABAP object, the systems to migrate between and
where the migrated objects go on the target.
"""

import asyncio
from pathlib import Path

import click

from abap_migration.cli.context import MigrationContext
from abap_migration.cli.decorators import handle_errors, pass_context, requires_config
from abap_migration.cli.utils import (
    console,
    echo_success,
    format_status,
    format_timestamp,
    print_table,
)
from abap_migration.client.exceptions import ConfigurationError
from abap_migration.migration.chat import ProjectChat
from abap_migration.utils.logging import get_logger

logger = get_logger(__name__)


@click.group(name="project")
def project() -> None:
    """Create and inspect migration projects."""
    pass


@project.command(name="create")
@click.argument("name")
@click.argument("objtype")
@click.option("--source", "source_system", required=True, help="Source system reference")
@click.option("--target", "target_system", required=True, help="Target system reference")
@click.option("--description", default="", help="Description used for new objects")
@click.option("--package", "parent_name", default="$TMP", show_default=True, help="Target package")
@click.option("--package-path", "parent_path", default="", help="Target package URI")
@click.option("--transport", default=None, help="Transport request for the target writes")
@click.option("--rules", default="", help="Project-specific migration rules")
@click.option(
    "--rules-file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Read project-specific migration rules from a file",
)
@pass_context
@requires_config
@handle_errors
def create(
    ctx: MigrationContext,
    name: str,
    objtype: str,
    source_system: str,
    target_system: str,
    description: str,
    parent_name: str,
    parent_path: str,
    transport: str | None,
    rules: str,
    rules_file: Path | None,
) -> None:
    """Create a project rooted at NAME of type OBJTYPE (e.g. PROG/P, CLAS/OC).

    Examples:

        abap-bridge -c config.yaml project create ZORDER_REPORT PROG/P \\
            --source ECC --target S4 --package ZMIGRATED
    """
    known = {ref.upper() for ref in ctx.config.systems}
    for system in (source_system, target_system):
        if system.upper() not in known:
            raise ConfigurationError(f"Unknown system reference: {system}")

    if rules_file is not None:
        rules = "\n".join(part for part in (rules, rules_file.read_text()) if part)

    created = ctx.store.create_project(
        name=name,
        objtype=objtype,
        description=description,
        parent_name=parent_name,
        parent_path=parent_path,
        transport=transport,
        migration_rules=rules,
        source_system=source_system,
        target_system=target_system,
    )
    echo_success(f"Created project {created.id} for {created.name} ({created.objtype})")


@project.command(name="list")
@pass_context
@requires_config
@handle_errors
def list_projects(ctx: MigrationContext) -> None:
    """List all projects."""
    projects = ctx.store.list_projects()
    if not projects:
        click.echo("No projects found.")
        return

    print_table(
        "Projects",
        ["ID", "Object", "Type", "Source", "Target", "Status", "Updated"],
        [
            [
                p.id,
                p.name,
                p.objtype,
                p.source_system or "-",
                p.target_system or "-",
                format_status(p.status),
                format_timestamp(p.updated_at),
            ]
            for p in projects
        ],
    )


@project.command(name="show")
@click.argument("project_id")
@pass_context
@requires_config
@handle_errors
def show(ctx: MigrationContext, project_id: str) -> None:
    """Show one project's settings."""
    p = ctx.store.get_project(project_id)
    rows = [
        ["Object", f"{p.name} ({p.objtype})"],
        ["Status", format_status(p.status)],
        ["Source system", p.source_system or "-"],
        ["Target system", p.target_system or "-"],
        ["Package", p.parent_name],
        ["Package path", p.parent_path or "-"],
        ["Transport", p.transport or "-"],
        ["Description", p.description or "-"],
        ["Created", format_timestamp(p.created_at)],
        ["Updated", format_timestamp(p.updated_at)],
    ]
    print_table(f"Project {p.id}", ["Setting", "Value"], rows)
    if p.migration_rules:
        console.print("\n[bold]Migration rules[/bold]")
        console.print(p.migration_rules, markup=False)


async def _ask(ctx: MigrationContext, project_id: str, message: str) -> str:
    try:
        answer = await ProjectChat(ctx.store, ctx.broker, ctx.agent).ask(project_id, message)
        return answer.content
    finally:
        await ctx.aclose()


@project.command(name="chat")
@click.argument("project_id")
@click.argument("message")
@pass_context
@requires_config
@handle_errors
def chat(ctx: MigrationContext, project_id: str, message: str) -> None:
    """Ask the migration agent about a project.

    The question and the answer are kept in the project's activity log and
    earlier questions are passed along as conversation history.

    Examples:

        abap-bridge -c config.yaml project chat 3f2a... "Why did ZORDER_TOP fail?"
    """
    if not message.strip():
        raise click.BadParameter("Message must not be empty", param_hint="MESSAGE")
    reply = asyncio.run(_ask(ctx, project_id, message))
    console.print(reply, markup=False)
