"""Rollback command implementation.

This module implements ``deploytag rollback`` which:
- Lists previous deployments of an environment with their CI status
- Validates the chosen target (staging only for services that have it)
- Shows the commits the rollback reverts and asks for confirmation
- Pushes a ``<target>-rollback-<epoch>`` tag at the target's commit

Example:
    $ deploytag rollback prod
    $ deploytag rollback staging --version v1.4.0-staging
    $ deploytag rollback dev --version v1.2.0-dev --skip-confirm
    $ deploytag rollback --history
"""

from __future__ import annotations

import click

from deploytag.cli._factory import Services, get_services
from deploytag.cli.output import format_history, format_rollback_plan, report_monitor, report_status
from deploytag.cli.prompts import choose
from deploytag.cli.utils import ExitCode, error_exit, exit_for_error, info, success
from deploytag.errors import DeployError
from deploytag.tags import Environment

ROLLBACK_ENVIRONMENTS = ["dev", "development", "staging", "prod", "production"]


def _choose_environment(services: Services) -> str:
    options = [("dev", "Development")]
    staging = services.selector.staging
    if staging is not None and staging.supports(services.config.service_name):
        options.append(("staging", "Staging"))
    options.append(("prod", "Production"))
    return choose("Select environment to roll back:", options)


def _choose_target(services: Services, environment: Environment, limit: int) -> str:
    entries = services.selector.history(environment, limit)
    if not entries:
        error_exit(
            f"No previous deployments found for {environment}",
            exit_code=ExitCode.ROLLBACK_TARGET,
        )
    info("")
    info(f"Recent {environment} deployments:")
    info(format_history(entries, numbered=True))
    selection = click.prompt(
        "Select version to roll back to",
        type=click.IntRange(1, len(entries)),
        err=True,
    )
    return entries[selection - 1].name


@click.command(
    name="rollback",
    help="Roll an environment back to a previously deployed version.",
    epilog="""
Examples:
    $ deploytag rollback prod
    $ deploytag rollback staging --version v1.4.0-staging
    $ deploytag rollback --history

Exit Codes:
    0  - Success, or CI run not observed
    1  - Cancelled at the confirmation gate
    5  - Push rejected
    6  - Invalid rollback target or staging not supported
    7  - CI run failed
    8  - git or CI query failed
""",
)
@click.argument(
    "environment",
    required=False,
    type=click.Choice(ROLLBACK_ENVIRONMENTS, case_sensitive=False),
)
@click.option("--version", "target", default=None, metavar="TAG", help="Tag to roll back to.")
@click.option(
    "--skip-confirm",
    is_flag=True,
    default=False,
    help="Skip the yes/no confirmation (never skips the production confirmation).",
)
@click.option(
    "--history",
    "show_history",
    is_flag=True,
    default=False,
    help="List recent rollbacks and exit.",
)
@click.option(
    "--limit",
    type=click.IntRange(1, 200),
    default=None,
    help="Number of entries to list.",
)
@click.option("--no-monitor", is_flag=True, default=False, help="Do not follow the CI run.")
@click.pass_context
def rollback_command(
    ctx: click.Context,
    environment: str | None,
    target: str | None,
    skip_confirm: bool,
    show_history: bool,
    limit: int | None,
    no_monitor: bool,
) -> None:
    """Roll back an environment.

    \b
    ENVIRONMENT: dev, staging or prod. Omit for the interactive menu.
    """
    services = get_services(ctx)
    config = services.config
    selector = services.selector

    try:
        if show_history:
            click.echo(format_history(selector.rollback_history(limit or 10)))
            return

        if environment is None:
            environment = _choose_environment(services)
        env = Environment.from_token(environment)

        selector.ensure_supported(env)
        if target is None:
            target = _choose_target(services, env, limit or config.max_versions_to_show)

        plan = selector.plan(env, target)
        info(format_rollback_plan(plan))
        selector.confirm(plan, services.operator, skip_confirm=skip_confirm)

        result = selector.execute(
            plan,
            monitor=config.monitor_deployment and not no_monitor,
            on_status=report_status,
        )
        success(f"Pushed rollback tag {plan.rollback_tag} ({plan.commit[:12]})")
        monitor = services.orchestrator.monitor
        report_monitor(
            result,
            monitor.manual_url if monitor is not None else None,
            external_sync=config.external_sync,
            argocd_url=config.argocd_url,
        )
    except DeployError as e:
        exit_for_error(e, "Rollback")


__all__: list[str] = ["ROLLBACK_ENVIRONMENTS", "rollback_command"]
