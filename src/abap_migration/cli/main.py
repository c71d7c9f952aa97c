"""
Main CLI entry point for ABAP Bridge.

This module provides the command-line interface for migrating legacy ABAP
objects from a source system into a target system.
"""

import sys
from pathlib import Path

import click
from dotenv import load_dotenv

from abap_migration import __version__
from abap_migration.cli.commands import config as config_commands
from abap_migration.cli.commands import migrate as migrate_commands
from abap_migration.cli.commands import project as project_commands
from abap_migration.cli.commands import units as units_commands
from abap_migration.cli.context import MigrationContext
from abap_migration.utils.logging import configure_logging, get_logger

# Load environment variables from .env file
load_dotenv()

logger = get_logger(__name__)


@click.group()
@click.version_option(version=__version__, prog_name="abap-bridge")
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, path_type=Path),
    help="Path to configuration file",
    envvar="ABAP_BRIDGE_CONFIG",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    help="Set console logging level (file logging stays at DEBUG)",
    envvar="ABAP_BRIDGE_LOG_LEVEL",
)
@click.option(
    "--log-file",
    type=click.Path(path_type=Path),
    help="Log file path (default: logs/migration.log)",
    envvar="ABAP_BRIDGE_LOG_FILE",
)
@click.pass_context
def cli(
    ctx: click.Context,
    config: Path | None,
    log_level: str,
    log_file: Path | None,
) -> None:
    """ABAP Bridge - Migrate legacy ABAP objects between systems.

    A project names one root object. The first run discovers the root and
    the custom objects it depends on, orders their sub-objects, and then an
    agent rewrites, checks and activates each sub-object on the target.

    Examples:

        # Validate configuration
        abap-bridge --config config.yaml config validate

        # Create a project
        abap-bridge -c config.yaml project create ZCL_ORDER_API CLAS/OC --source ECC --target S4

        # Run it, Ctrl+C pauses
        abap-bridge -c config.yaml migrate start <project-id>

        # Show progress
        abap-bridge -c config.yaml migrate status <project-id>
    """
    effective_log_file = str(log_file) if log_file else "logs/migration.log"

    configure_logging(level=log_level, log_file=effective_log_file)

    ctx.obj = MigrationContext(
        config_path=config,
        log_level=log_level,
        log_file=log_file,
    )

    logger.debug(
        "cli_initialized",
        config=str(config) if config else None,
        log_level=log_level,
    )


cli.add_command(config_commands.config)
cli.add_command(project_commands.project)
cli.add_command(migrate_commands.migrate)
cli.add_command(units_commands.units)


def main() -> int:
    """Main entry point for CLI."""
    try:
        # With standalone_mode off, click returns the exit code of a raised Exit
        result = cli(standalone_mode=False)
        return result if isinstance(result, int) else 0
    except click.exceptions.Abort:
        click.echo("Aborted!", err=True)
        return 1
    except click.ClickException as e:
        e.show()
        return e.exit_code
    except Exception as e:
        logger.error("unexpected_error", error=str(e), exc_info=True)
        click.echo(f"Error: {e}", err=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
