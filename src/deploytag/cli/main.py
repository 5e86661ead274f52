"""Main entry point for the deploytag CLI.

Commands:
    deploytag deploy: Create and push a deployment tag
    deploytag rollback: Roll an environment back to an earlier tag
    deploytag history: List an environment's deployments

Running ``deploytag`` without a command starts the interactive deploy menu.

Example:
    $ deploytag --help
    $ deploytag deploy staging --minor
    $ deploytag --verbose rollback prod --version v2.5.0
"""

from __future__ import annotations

import sys
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as get_version
from pathlib import Path

import click

from deploytag.cli.deploy import deploy_command
from deploytag.cli.history import history_command
from deploytag.cli.rollback import rollback_command
from deploytag.errors import DeployError
from deploytag.logging import configure_logging


def _get_version() -> str:
    """Get the deploytag package version.

    Returns:
        Version string from package metadata, or 'unknown' if not installed.
    """
    try:
        return get_version("deploytag")
    except PackageNotFoundError:
        return "unknown"


@click.group(
    name="deploytag",
    help="deploytag - Tag-driven deployments and rollbacks.",
    epilog="Use 'deploytag <command> --help' for command-specific help.",
    invoke_without_command=True,
    context_settings={
        "help_option_names": ["-h", "--help"],
    },
)
@click.version_option(
    version=_get_version(),
    prog_name="deploytag",
    message="%(prog)s %(version)s",
)
@click.option("--verbose", "-v", is_flag=True, default=False, help="Enable debug logging.")
@click.option("--json-logs", is_flag=True, default=False, help="Emit logs as JSON lines.")
@click.option(
    "--config",
    "config_path",
    type=click.Path(path_type=Path, dir_okay=False),
    default=None,
    help="YAML configuration file (default: .deploy.yaml).",
)
@click.pass_context
def cli(ctx: click.Context, verbose: bool, json_logs: bool, config_path: Path | None) -> None:
    """Root command group for the deploytag CLI."""
    ctx.ensure_object(dict)
    if config_path is not None:
        ctx.obj["config_path"] = config_path
    configure_logging("DEBUG" if verbose else "WARNING", json_output=json_logs)

    if ctx.invoked_subcommand is None:
        ctx.invoke(deploy_command)


cli.add_command(deploy_command)
cli.add_command(rollback_command)
cli.add_command(history_command)


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the deploytag CLI.

    Args:
        argv: Command-line arguments (uses sys.argv if None).
    """
    try:
        cli(args=argv, standalone_mode=False)
    except click.ClickException as e:
        e.show()
        sys.exit(e.exit_code)
    except click.Abort:
        click.echo("Aborted!", err=True)
        sys.exit(1)
    except DeployError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(e.exit_code)


if __name__ == "__main__":
    main()
