"""Test fixtures for the deploytag CLI.

Commands run against the in-memory repository and fake CI provider from the
root conftest. The services are injected through ``ctx.obj`` so no git
checkout or configuration file is needed.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence

import pytest
from click.testing import CliRunner, Result

from deploytag.cli._factory import Services
from deploytag.cli.main import cli
from deploytag.cli.prompts import ConsoleOperator
from deploytag.config import DeployConfig
from deploytag.deployment import DeploymentOrchestrator
from deploytag.monitor import RunMonitor
from deploytag.rollback import RollbackSelector, StaticStagingCatalog
from deploytag.testing import FakeClock, FakeRunProvider, InMemoryTagRepository

Invoke = Callable[..., Result]


@pytest.fixture
def cli_runner() -> CliRunner:
    """Create a Click CLI test runner.

    Returns:
        CliRunner instance for testing CLI commands.
    """
    return CliRunner()


@pytest.fixture
def config() -> DeployConfig:
    """Configuration of the ``payments`` service, which has a staging environment."""
    return DeployConfig(
        service_name="payments",
        staging_services=["payments", "storefront-web"],
        argocd_url="https://argocd.acme.internal/applications/payments",
    )


@pytest.fixture
def services(
    config: DeployConfig,
    repo: InMemoryTagRepository,
    monitor: RunMonitor,
    provider: FakeRunProvider,
    clock: FakeClock,
) -> Services:
    """Services wired from ``config`` to in-memory fakes, with a terminal operator."""
    orchestrator = DeploymentOrchestrator.from_config(config, repo, monitor)
    selector = RollbackSelector(
        orchestrator,
        staging=StaticStagingCatalog(config.staging_services),
        run_provider=provider,
        clock=clock,
    )
    return Services(
        config=config,
        repository=repo,
        orchestrator=orchestrator,
        selector=selector,
        operator=ConsoleOperator(),
    )


@pytest.fixture
def invoke(cli_runner: CliRunner, services: Services) -> Invoke:
    """Invoke the CLI with the fake services.

    Example:
        >>> result = invoke(["deploy", "prod"], input="DEPLOY v0.0.1\\n")
    """

    def _invoke(args: Sequence[str], input: str | None = None) -> Result:
        return cli_runner.invoke(cli, list(args), input=input, obj={"services": services})

    return _invoke
