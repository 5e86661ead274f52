"""Shared construction of the deployment services used by CLI commands.

Commands look services up with ``get_services(ctx)``. Tests pre-populate
``ctx.obj["services"]`` to run commands against in-memory fakes.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import click
from pydantic import ValidationError

from deploytag.ci import actions_url, create_run_provider, resolve_repo_slug
from deploytag.cli.prompts import ConsoleOperator
from deploytag.cli.utils import ExitCode, error_exit
from deploytag.config import DeployConfig, get_config
from deploytag.deployment import DeploymentOrchestrator, Operator
from deploytag.monitor import RunMonitor
from deploytag.repository import GitRepository, TagRepository
from deploytag.rollback import RollbackSelector, StaticStagingCatalog


@dataclass
class Services:
    """Everything a command needs, wired from one configuration."""

    config: DeployConfig
    repository: TagRepository
    orchestrator: DeploymentOrchestrator
    selector: RollbackSelector
    operator: Operator


def create_services(config: DeployConfig, repository: TagRepository | None = None) -> Services:
    """Wire repository, CI provider, monitor, orchestrator and rollback selector.

    Args:
        config: Loaded configuration.
        repository: Repository to use (default: git in the current directory).

    Returns:
        Services ready for a command.
    """
    repo = repository or GitRepository(remote=config.git_remote)
    provider = create_run_provider(config, repo)
    monitor = RunMonitor(
        provider,
        config.monitor_config(),
        manual_url=actions_url(resolve_repo_slug(config, repo)),
    )
    orchestrator = DeploymentOrchestrator.from_config(config, repo, monitor)
    selector = RollbackSelector(
        orchestrator,
        staging=StaticStagingCatalog(config.staging_services),
        run_provider=provider,
    )
    return Services(
        config=config,
        repository=repo,
        orchestrator=orchestrator,
        selector=selector,
        operator=ConsoleOperator(),
    )


def get_services(ctx: click.Context) -> Services:
    """Return the services for this invocation, creating them on first use."""
    obj = ctx.ensure_object(dict)
    services = obj.get("services")
    if services is None:
        config_path: Path | None = obj.get("config_path")
        try:
            config = get_config(config_path)
        except (ValidationError, ValueError) as e:
            error_exit(f"Invalid configuration: {e}", exit_code=ExitCode.USAGE_ERROR)
        services = create_services(config)
        obj["services"] = services
    return services


__all__: list[str] = ["Services", "create_services", "get_services"]
