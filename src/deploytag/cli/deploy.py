"""Deploy command implementation.

This module implements ``deploytag deploy`` which:
- Resolves the next version of the environment's track
- Gates the deployment (uncommitted changes, branch, production confirmation)
- Handles tag collisions (rebuild, different version, cancel)
- Creates and pushes the tag, then follows the CI run it triggers

Example:
    $ deploytag deploy dev
    $ deploytag deploy staging --minor
    $ deploytag deploy prod --version 2.0.0 --preview
    $ deploytag deploy staging --rebuild
"""

from __future__ import annotations

import click
from pydantic import ValidationError

from deploytag.cli._factory import Services, get_services
from deploytag.cli.output import format_plan, format_recent, report_monitor, report_status
from deploytag.cli.prompts import choose
from deploytag.cli.rollback import rollback_command
from deploytag.cli.utils import ExitCode, error_exit, exit_for_error, info, success
from deploytag.errors import DeployError
from deploytag.schemas.deployment import DeploymentIntent, DeploymentStatus, IncrementKind
from deploytag.tags import Environment
from deploytag.versioning import increment as bump
from deploytag.versioning import latest

ENVIRONMENT_CHOICES = ["dev", "development", "staging", "prod", "production", "hotfix", "rollback"]


def validation_message(exc: ValidationError) -> str:
    """Flatten a pydantic validation error into one line."""
    return "; ".join(err["msg"].removeprefix("Value error, ") for err in exc.errors())


def _print_header(services: Services) -> None:
    repository = services.repository
    info(f"Service: {services.config.service_name}")
    info(f"Branch:  {repository.current_branch() or '(detached HEAD)'}")
    info(f"Recent:  {format_recent(services.orchestrator.recent_tags())}")


def _choose_environment(services: Services) -> str:
    options = [
        ("dev", "Development"),
        ("staging", "Staging"),
        ("prod", "Production"),
    ]
    if services.config.enable_hotfix:
        options.append(("hotfix", "Hotfix (production patch)"))
    options.append(("rollback", "Rollback"))
    return choose("Select deployment environment:", options)


def _choose_version(services: Services, environment: Environment) -> dict[str, object]:
    current = latest(environment, services.repository.list_tags(), services.config.version_prefix)
    choice = choose(
        f"Current {environment} version: {current}. Select version bump:",
        [
            ("patch", f"Patch ({bump(current, IncrementKind.PATCH)})"),
            ("minor", f"Minor ({bump(current, IncrementKind.MINOR)})"),
            ("major", f"Major ({bump(current, IncrementKind.MAJOR)})"),
            ("custom", "Enter a specific version"),
            ("rebuild", f"Rebuild current version ({current})"),
        ],
        default=1,
    )
    if choice == "custom":
        version = click.prompt("Enter version (X.Y.Z)", err=True)
        return {"explicit_version": version.strip()}
    if choice == "rebuild":
        return {"rebuild": True}
    return {"increment": IncrementKind(choice)}


@click.command(
    name="deploy",
    help="Create and push a deployment tag for an environment.",
    epilog="""
Examples:
    $ deploytag deploy dev
    $ deploytag deploy staging --minor
    $ deploytag deploy prod --version 2.0.0 --preview
    $ deploytag deploy hotfix

Exit Codes:
    0  - Success, preview, or CI run not observed
    1  - Cancelled at a confirmation gate
    3  - Invalid version
    4  - Tag already exists
    5  - Push rejected
    7  - CI run failed
    8  - git or CI query failed
""",
)
@click.argument(
    "environment",
    required=False,
    type=click.Choice(ENVIRONMENT_CHOICES, case_sensitive=False),
)
@click.option("--major", "increment", flag_value="major", help="Bump the major version.")
@click.option("--minor", "increment", flag_value="minor", help="Bump the minor version.")
@click.option("--patch", "increment", flag_value="patch", help="Bump the patch version (default).")
@click.option(
    "--version",
    "explicit_version",
    default=None,
    metavar="X.Y.Z",
    help="Deploy a specific version instead of bumping.",
)
@click.option("--rebuild", is_flag=True, default=False, help="Re-point the latest tag at HEAD.")
@click.option("--message", "-m", default=None, metavar="TEXT", help="Tag annotation.")
@click.option(
    "--preview",
    "--dry-run",
    "dry_run",
    is_flag=True,
    default=False,
    help="Show what would be deployed without creating or pushing anything.",
)
@click.option("--no-monitor", is_flag=True, default=False, help="Do not follow the CI run.")
@click.pass_context
def deploy_command(
    ctx: click.Context,
    environment: str | None,
    increment: str | None,
    explicit_version: str | None,
    rebuild: bool,
    message: str | None,
    dry_run: bool,
    no_monitor: bool,
) -> None:
    """Deploy the current commit to an environment.

    \b
    ENVIRONMENT: dev, staging, prod, hotfix or rollback. Omit for the interactive menu.
    """
    services = get_services(ctx)
    config = services.config

    version_options: dict[str, object] = {
        "increment": IncrementKind(increment) if increment else None,
        "explicit_version": explicit_version,
        "rebuild": rebuild,
    }

    if environment is None:
        _print_header(services)
        environment = _choose_environment(services)
        chose_version = bool(increment or explicit_version or rebuild)
        if environment not in ("rollback", "hotfix") and not chose_version:
            version_options = _choose_version(services, Environment.from_token(environment))

    environment = environment.lower()
    if environment == "rollback":
        ctx.invoke(rollback_command, no_monitor=no_monitor)
        return

    hotfix = environment == "hotfix"
    target = Environment.PRODUCTION if hotfix else Environment.from_token(environment)

    try:
        intent = DeploymentIntent(
            environment=target,
            message=message,
            dry_run=dry_run,
            monitor=config.monitor_deployment and not no_monitor,
            hotfix=hotfix,
            **version_options,
        )
    except ValidationError as e:
        error_exit(validation_message(e), exit_code=ExitCode.USAGE_ERROR)

    info(f"Deploying {config.service_name} to {target}")
    try:
        result = services.orchestrator.deploy(intent, services.operator, on_status=report_status)
        if result.status is DeploymentStatus.PREVIEW:
            click.echo(format_plan(result.plan))
            success("Preview only: no tag was created or pushed")
            return

        verb = "Rebuilt" if result.rebuilt else "Pushed"
        success(f"{verb} tag {result.tag_name} ({result.plan.commit[:12]})")
        report_monitor(
            result.monitor,
            result.manual_url,
            external_sync=result.external_sync_hint,
            argocd_url=config.argocd_url,
        )
    except DeployError as e:
        exit_for_error(e, "Deployment")


__all__: list[str] = ["ENVIRONMENT_CHOICES", "deploy_command", "validation_message"]
