"""History command implementation.

Example:
    $ deploytag history prod
    $ deploytag history staging --limit 5
"""

from __future__ import annotations

import click

from deploytag.cli._factory import get_services
from deploytag.cli.output import format_history
from deploytag.cli.utils import exit_for_error
from deploytag.errors import DeployError
from deploytag.tags import Environment

HISTORY_ENVIRONMENTS = ["dev", "development", "staging", "prod", "production"]


@click.command(
    name="history",
    help="List deployments of an environment, highest version first.",
)
@click.argument("environment", type=click.Choice(HISTORY_ENVIRONMENTS, case_sensitive=False))
@click.option(
    "--limit",
    type=click.IntRange(1, 200),
    default=None,
    help="Number of entries (default: MAX_VERSIONS_TO_SHOW).",
)
@click.pass_context
def history_command(ctx: click.Context, environment: str, limit: int | None) -> None:
    """Show deployment history with commit, author, date and CI status.

    \b
    ENVIRONMENT: dev, staging or prod.
    """
    services = get_services(ctx)
    try:
        entries = services.selector.history(
            Environment.from_token(environment),
            limit or services.config.max_versions_to_show,
        )
    except DeployError as e:
        exit_for_error(e, "History")
    click.echo(format_history(entries))


__all__: list[str] = ["history_command"]
