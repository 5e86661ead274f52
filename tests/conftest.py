"""Shared test fixtures for deploytag.

Every test runs in its own temporary working directory with the deploytag
environment variables cleared, so a developer's ``.deploy.config`` or
``GITHUB_TOKEN`` never leaks into results.

Note:
    No __init__.py files in test directories - pytest uses importlib mode
    which causes namespace collisions with __init__.py files.
"""

from __future__ import annotations

from collections.abc import Callable, Generator
from pathlib import Path

import pytest
import structlog

from deploytag.deployment import DeploymentOrchestrator
from deploytag.monitor import MonitorConfig, RunMonitor
from deploytag.rollback import RollbackSelector, StaticStagingCatalog
from deploytag.schemas.runs import WorkflowRun
from deploytag.testing import FakeClock, FakeRunProvider, InMemoryTagRepository

_CONFIG_ENV_VARS = (
    "SERVICE_NAME",
    "DEFAULT_BRANCH",
    "DEPLOY_BRANCHES",
    "VERSION_PREFIX",
    "ENABLE_HOTFIX",
    "ENABLE_PREVIEW",
    "MONITOR_DEPLOYMENT",
    "DEPLOY_TYPE",
    "ARGOCD_URL",
    "MAX_VERSIONS_TO_SHOW",
    "STAGING_SERVICES",
    "GIT_REMOTE",
    "RUN_PROVIDER",
    "GITHUB_REPOSITORY",
    "GITHUB_TOKEN",
    "GITHUB_API_URL",
)

HEAD = "c0ffee0000000000000000000000000000000003"


@pytest.fixture(autouse=True)
def isolated_environment(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> Generator[Path, None, None]:
    """Run each test in an empty directory without deploytag environment variables."""
    for name in _CONFIG_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    yield tmp_path
    structlog.reset_defaults()


@pytest.fixture
def repo() -> InMemoryTagRepository:
    """Repository with three commits on main; HEAD is the last one."""
    repository = InMemoryTagRepository()
    repository.commit("c0ffee0000000000000000000000000000000001", "Add payments API")
    repository.commit("c0ffee0000000000000000000000000000000002", "Fix rounding")
    repository.commit(HEAD, "Add refunds")
    return repository


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def provider() -> FakeRunProvider:
    return FakeRunProvider()


@pytest.fixture
def monitor(provider: FakeRunProvider, clock: FakeClock) -> RunMonitor:
    return RunMonitor(provider, MonitorConfig(), clock=clock, sleep=clock.sleep)


@pytest.fixture
def orchestrator(repo: InMemoryTagRepository, monitor: RunMonitor) -> DeploymentOrchestrator:
    return DeploymentOrchestrator(repo, monitor, service="payments")


@pytest.fixture
def selector(
    orchestrator: DeploymentOrchestrator,
    provider: FakeRunProvider,
    clock: FakeClock,
) -> RollbackSelector:
    return RollbackSelector(
        orchestrator,
        staging=StaticStagingCatalog(["payments", "storefront-web"]),
        run_provider=provider,
        clock=clock,
    )


@pytest.fixture
def make_run() -> Callable[..., WorkflowRun]:
    """Build a WorkflowRun for a tag.

    Example:
        >>> run = make_run(7, "v1.0.0", status="in_progress", conclusion=None)
    """

    def _make(
        run_id: int,
        tag: str,
        *,
        status: str = "completed",
        conclusion: str | None = "success",
        sha: str | None = None,
    ) -> WorkflowRun:
        return WorkflowRun(
            run_id=run_id,
            status=status,
            conclusion=conclusion,
            head_branch=tag,
            head_sha=sha,
            url=f"https://github.com/acme/payments/actions/runs/{run_id}",
            name="Deploy",
        )

    return _make
