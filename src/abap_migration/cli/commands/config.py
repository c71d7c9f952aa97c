"""
Configuration management commands.

This module provides commands for validating the migration configuration.
"""

import asyncio

import click

from abap_migration.cli.context import MigrationContext
from abap_migration.cli.decorators import handle_errors, pass_context, requires_config
from abap_migration.cli.utils import echo_error, echo_info, echo_success, echo_warning, print_table
from abap_migration.client.exceptions import ABAPMigrationError, ConfigurationError
from abap_migration.config import MigrationConfig
from abap_migration.migration.database import validate_database_connection
from abap_migration.utils.logging import get_logger

logger = get_logger(__name__)


@click.group(name="config")
def config() -> None:
    """Configuration management commands."""
    pass


@config.command(name="validate")
@click.option(
    "--check-connectivity",
    is_flag=True,
    help="Run a search against every configured system",
)
@pass_context
@requires_config
@handle_errors
def validate(ctx: MigrationContext, check_connectivity: bool) -> None:
    """Validate migration configuration.

    Checks that systems and the agent service are configured and that the
    state database is reachable. With --check-connectivity it also calls
    every system's tool gateway.

    Examples:

        abap-bridge --config config.yaml config validate --check-connectivity
    """
    echo_info(f"Validating configuration: {ctx.config_path}")
    cfg = ctx.config

    click.echo()
    _display_config_summary(cfg)
    click.echo()

    if not cfg.systems:
        raise ConfigurationError("No systems configured")
    if cfg.agent is None:
        raise ConfigurationError("No migration agent service configured (agent.url)")
    if cfg.advisor is None:
        echo_warning("No ordering advisor configured: unparseable objects use sequential order")

    if not validate_database_connection(cfg.state.database_url):
        raise ConfigurationError(f"Cannot open state database: {cfg.state.db_path}")
    echo_success("State database reachable")

    if check_connectivity:
        click.echo()
        echo_info("Testing connectivity...")
        failures = asyncio.run(_test_connectivity(ctx))
        if failures:
            raise click.exceptions.Exit(1)

    click.echo()
    echo_success("Configuration is valid!")


def _display_config_summary(cfg: MigrationConfig) -> None:
    rows = [[f"System {name}", system.url] for name, system in sorted(cfg.systems.items())]
    rows.append(["Agent", cfg.agent.url if cfg.agent else "-"])
    rows.append(["Advisor", cfg.advisor.url if cfg.advisor else "-"])
    rows.append(["State database", cfg.state.db_path])
    rows.append(["Customer prefixes", ", ".join(cfg.discovery.customer_prefixes)])
    rows.append(["Max tool rounds", cfg.worker.max_tool_rounds])
    print_table("Configuration", ["Setting", "Value"], rows)


async def _test_connectivity(ctx: MigrationContext) -> int:
    failures = 0
    try:
        for name in ctx.registry.names():
            try:
                await ctx.registry.get(name).search("Z*", max_results=1)
                echo_success(f"{name}: reachable")
            except ABAPMigrationError as e:
                failures += 1
                logger.warning("connectivity_check_failed", system=name, error=str(e))
                echo_error(f"{name}: {e}")
    finally:
        await ctx.aclose()
    return failures
