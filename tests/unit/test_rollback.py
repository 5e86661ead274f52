"""Unit tests for the rollback selector."""

from __future__ import annotations

from collections.abc import Callable

import pytest

from deploytag.deployment import DeploymentOrchestrator
from deploytag.errors import (
    DeploymentCancelledError,
    RollbackTargetError,
    StagingNotSupportedError,
    TargetNotFoundError,
)
from deploytag.rollback import RollbackSelector, StaticStagingCatalog
from deploytag.schemas.runs import MonitorOutcome, RunConclusion, WorkflowRun
from deploytag.tags import Environment
from deploytag.testing import (
    FakeClock,
    FakeRunProvider,
    InMemoryTagRepository,
    ScriptedOperator,
)

FIRST = "c0ffee0000000000000000000000000000000001"
SECOND = "c0ffee0000000000000000000000000000000002"
HEAD = "c0ffee0000000000000000000000000000000003"
NOW = 1_724_850_000


@pytest.fixture
def production(repo: InMemoryTagRepository) -> InMemoryTagRepository:
    """Production at v3.0.0 (HEAD) with v2.5.0 on the first commit."""
    repo.seed_tag("v2.5.0", FIRST)
    repo.seed_tag("v3.0.0", HEAD)
    repo.seed_tag("v3.0.0-dev", HEAD)
    return repo


class TestProductionRollback:
    """Rolling production back to an earlier release."""

    def test_plan(self, selector: RollbackSelector, production: InMemoryTagRepository) -> None:
        """The rollback tag points at the target commit and records who and why."""
        plan = selector.plan(Environment.PRODUCTION, "v2.5.0")

        assert plan.current.name == "v3.0.0"
        assert plan.target.name == "v2.5.0"
        assert plan.rollback_tag.name == f"v2.5.0-rollback-{NOW}"
        assert plan.commit == FIRST
        assert plan.operator == "Dev Eloper"
        assert plan.message == "Rollback production from v3.0.0 to v2.5.0 by Dev Eloper"
        assert plan.changes == ["c0ffee0 Add refunds", "c0ffee0 Fix rounding"]
        assert production.operations == []

    def test_confirm_and_execute(
        self,
        selector: RollbackSelector,
        production: InMemoryTagRepository,
    ) -> None:
        """A confirmed rollback pushes a new marker and leaves existing tags alone."""
        operator = ScriptedOperator(typed=["ROLLBACK v2.5.0"])
        plan, result = selector.rollback(
            Environment.PRODUCTION, "v2.5.0", operator, monitor=False
        )

        assert result is None
        marker = plan.rollback_tag.name
        assert production.operations == [
            ("create_tag", marker, FIRST, ""),
            ("push_tag", marker, ""),
        ]
        assert production.remote[marker] == FIRST
        assert production.remote["v2.5.0"] == FIRST
        assert production.remote["v3.0.0"] == HEAD

    @pytest.mark.parametrize("typed", ["ROLLBACK v3.0.0", "rollback v2.5.0", ""])
    def test_typed_confirmation_required(
        self,
        selector: RollbackSelector,
        production: InMemoryTagRepository,
        typed: str,
    ) -> None:
        """Production requires the exact phrase, even with skip_confirm."""
        operator = ScriptedOperator(typed=[typed])
        with pytest.raises(DeploymentCancelledError, match="Rollback cancelled"):
            selector.rollback(Environment.PRODUCTION, "v2.5.0", operator, skip_confirm=True)
        assert production.operations == []

    def test_monitored_rollback(
        self,
        selector: RollbackSelector,
        production: InMemoryTagRepository,
        provider: FakeRunProvider,
        make_run: Callable[..., WorkflowRun],
    ) -> None:
        provider.add_run(make_run(21, f"v2.5.0-rollback-{NOW}", sha=FIRST))
        operator = ScriptedOperator(typed=["ROLLBACK v2.5.0"])

        _, result = selector.rollback(Environment.PRODUCTION, "v2.5.0", operator)

        assert result is not None
        assert result.outcome is MonitorOutcome.SUCCESS


class TestOtherEnvironments:
    """Development and staging take a yes/no confirmation."""

    def test_skip_confirm(
        self,
        selector: RollbackSelector,
        repo: InMemoryTagRepository,
    ) -> None:
        repo.seed_tag("v1.0.0-dev", FIRST)
        repo.seed_tag("v1.1.0-dev", HEAD)
        operator = ScriptedOperator()

        plan, _ = selector.rollback(
            Environment.DEVELOPMENT, "v1.0.0-dev", operator, skip_confirm=True, monitor=False
        )

        assert plan.rollback_tag.name == f"v1.0.0-dev-rollback-{NOW}"
        assert operator.prompts == []
        assert repo.remote[plan.rollback_tag.name] == FIRST

    def test_declined(self, selector: RollbackSelector, repo: InMemoryTagRepository) -> None:
        repo.seed_tag("v1.0.0-dev", FIRST)
        repo.seed_tag("v1.1.0-dev", HEAD)
        operator = ScriptedOperator(confirms=[False])
        with pytest.raises(DeploymentCancelledError):
            selector.rollback(Environment.DEVELOPMENT, "v1.0.0-dev", operator)
        assert repo.operations == []

    def test_staging_supported(
        self,
        selector: RollbackSelector,
        repo: InMemoryTagRepository,
    ) -> None:
        repo.seed_tag("v1.0.0-staging", FIRST)
        plan = selector.plan(Environment.STAGING, "v1.0.0-staging")
        assert plan.rollback_tag.name == f"v1.0.0-staging-rollback-{NOW}"
        assert plan.changes == []

    def test_staging_not_supported(
        self,
        orchestrator: DeploymentOrchestrator,
        repo: InMemoryTagRepository,
        clock: FakeClock,
    ) -> None:
        """Services without staging are refused before the target is looked up."""
        repo.seed_tag("v1.0.0-staging", FIRST)
        selector = RollbackSelector(
            orchestrator, staging=StaticStagingCatalog(["storefront-web"]), clock=clock
        )

        with pytest.raises(StagingNotSupportedError) as exc_info:
            selector.plan(Environment.STAGING, "v1.0.0-staging")

        assert isinstance(exc_info.value, RollbackTargetError)
        assert exc_info.value.exit_code == 6
        assert "storefront-web" in str(exc_info.value)

    def test_staging_without_catalog(
        self,
        orchestrator: DeploymentOrchestrator,
        clock: FakeClock,
    ) -> None:
        selector = RollbackSelector(orchestrator, clock=clock)
        with pytest.raises(StagingNotSupportedError):
            selector.ensure_supported(Environment.STAGING)
        selector.ensure_supported(Environment.PRODUCTION)


class TestValidation:
    """Rollback targets must be existing deployment tags of the environment."""

    @pytest.mark.parametrize(
        ("target", "reason"),
        [
            ("v9.9.9", "does not exist"),
            ("v3.0.0-dev", "belongs to development"),
            ("latest", "is not a deployment tag"),
            (f"v2.5.0-rollback-{NOW - 100}", "is a rollback marker"),
        ],
    )
    def test_rejected_targets(
        self,
        selector: RollbackSelector,
        production: InMemoryTagRepository,
        target: str,
        reason: str,
    ) -> None:
        production.seed_tag(f"v2.5.0-rollback-{NOW - 100}", FIRST)

        with pytest.raises(TargetNotFoundError) as exc_info:
            selector.plan(Environment.PRODUCTION, target)

        error = exc_info.value
        assert error.reason == reason
        assert error.available == ["v3.0.0", "v2.5.0"]
        assert error.exit_code == 6
        assert production.operations == []


class TestRollbackTimestamps:
    """Rollback markers never collide."""

    def test_repeated_rollback_gets_new_marker(
        self,
        selector: RollbackSelector,
        production: InMemoryTagRepository,
    ) -> None:
        production.seed_tag(f"v2.5.0-rollback-{NOW}", FIRST)
        plan = selector.plan(Environment.PRODUCTION, "v2.5.0")
        assert plan.rollback_tag.name == f"v2.5.0-rollback-{NOW + 1}"

    def test_marker_never_precedes_earlier_marker(
        self,
        selector: RollbackSelector,
        production: InMemoryTagRepository,
    ) -> None:
        """A clock behind the last marker still produces a later timestamp."""
        production.seed_tag(f"v2.5.0-rollback-{NOW + 500}", FIRST)
        plan = selector.plan(Environment.PRODUCTION, "v2.5.0")
        assert plan.rollback_tag.rollback_timestamp == NOW + 501


class TestHistory:
    """Listing candidate tags and past rollbacks."""

    def test_history_by_version_with_run_status(
        self,
        selector: RollbackSelector,
        repo: InMemoryTagRepository,
        provider: FakeRunProvider,
        make_run: Callable[..., WorkflowRun],
    ) -> None:
        """Entries are ordered by version and carry their last run's conclusion."""
        repo.seed_tag("v1.10.0", HEAD)
        repo.seed_tag("v1.2.0", FIRST)
        repo.seed_tag("v1.9.0", SECOND)
        repo.seed_tag("v1.9.0-rollback-5", SECOND)
        provider.add_run(make_run(1, "v1.10.0", conclusion="failure"))
        provider.add_run(make_run(2, "v1.9.0"))

        entries = selector.history(Environment.PRODUCTION)

        assert [e.name for e in entries] == ["v1.10.0", "v1.9.0", "v1.2.0"]
        assert [e.run_status for e in entries] == [
            RunConclusion.FAILURE,
            RunConclusion.SUCCESS,
            RunConclusion.UNKNOWN,
        ]
        assert entries[1].short_commit == SECOND[:8]
        assert entries[1].message == "Release v1.9.0"
        assert entries[1].author == "Dev Eloper"

    def test_history_limit(self, selector: RollbackSelector, repo: InMemoryTagRepository) -> None:
        for minor in range(5):
            repo.seed_tag(f"v1.{minor}.0-dev", FIRST)
        entries = selector.history(Environment.DEVELOPMENT, limit=2)
        assert [e.name for e in entries] == ["v1.4.0-dev", "v1.3.0-dev"]

    def test_history_when_ci_unreachable(
        self,
        selector: RollbackSelector,
        repo: InMemoryTagRepository,
        provider: FakeRunProvider,
    ) -> None:
        """Run status degrades to unknown instead of failing the listing."""
        repo.seed_tag("v1.0.0", FIRST)
        provider.list_errors = 1
        entries = selector.history(Environment.PRODUCTION)
        assert [e.run_status for e in entries] == [RunConclusion.UNKNOWN]

    def test_empty_history(self, selector: RollbackSelector) -> None:
        assert selector.history(Environment.STAGING) == []

    def test_rollback_history_newest_first(
        self,
        selector: RollbackSelector,
        repo: InMemoryTagRepository,
    ) -> None:
        repo.seed_tag("v1.0.0", FIRST)
        repo.seed_tag("v1.0.0-rollback-100", FIRST)
        repo.seed_tag("v1.1.0-dev-rollback-300", FIRST)
        repo.seed_tag("v0.9.0-staging-rollback-200", FIRST)

        entries = selector.rollback_history(limit=2)

        assert [e.name for e in entries] == [
            "v1.1.0-dev-rollback-300",
            "v0.9.0-staging-rollback-200",
        ]
