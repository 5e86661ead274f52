"""Unit tests for the rollback command."""

from __future__ import annotations

from collections.abc import Callable

from click.testing import CliRunner, Result

from deploytag.cli._factory import Services
from deploytag.cli.main import cli
from deploytag.rollback import RollbackSelector, StaticStagingCatalog
from deploytag.testing import InMemoryTagRepository

FIRST = "c0ffee0000000000000000000000000000000001"
HEAD = "c0ffee0000000000000000000000000000000003"
MARKER = "v2.5.0-rollback-1724850000"

Invoke = Callable[..., Result]


def seed_production(repo: InMemoryTagRepository) -> None:
    repo.seed_tag("v2.5.0", FIRST)
    repo.seed_tag("v3.0.0", HEAD)


class TestRollbackHelp:
    """Tests for rollback command help text."""

    def test_help(self, invoke: Invoke) -> None:
        result = invoke(["rollback", "--help"])

        assert result.exit_code == 0
        assert "--skip-confirm" in result.output
        assert "--history" in result.output


class TestProductionRollback:
    """Rolling production back with the typed confirmation."""

    def test_rollback(self, invoke: Invoke, repo: InMemoryTagRepository) -> None:
        seed_production(repo)
        result = invoke(
            ["rollback", "prod", "--version", "v2.5.0", "--no-monitor"],
            input="ROLLBACK v2.5.0\n",
        )

        assert result.exit_code == 0, result.output
        assert "Rollback Plan" in result.output
        assert "From:" in result.output
        assert "Changes Reverted:" in result.output
        assert "c0ffee0 Add refunds" in result.output
        assert f"Pushed rollback tag {MARKER} (c0ffee000000)" in result.output
        assert "Monitor the deployment at: https://github.com/acme/payments/actions" in (
            result.output
        )
        assert repo.remote[MARKER] == FIRST
        assert repo.remote["v3.0.0"] == HEAD

    def test_wrong_confirmation(self, invoke: Invoke, repo: InMemoryTagRepository) -> None:
        seed_production(repo)
        result = invoke(["rollback", "prod", "--version", "v2.5.0"], input="ROLLBACK v3.0.0\n")

        assert result.exit_code == 1
        assert "Rollback cancelled" in result.output
        assert repo.operations == []

    def test_skip_confirm_does_not_skip_production(
        self,
        invoke: Invoke,
        repo: InMemoryTagRepository,
    ) -> None:
        seed_production(repo)
        result = invoke(["rollback", "prod", "--version", "v2.5.0", "--skip-confirm"], input="\n")

        assert result.exit_code == 1
        assert repo.operations == []

    def test_unknown_target(self, invoke: Invoke, repo: InMemoryTagRepository) -> None:
        seed_production(repo)
        result = invoke(["rollback", "prod", "--version", "v9.9.9"])

        assert result.exit_code == 6
        assert "v9.9.9 does not exist for production" in result.output
        assert "Available: v3.0.0, v2.5.0" in result.output

    def test_interactive_target_selection(
        self,
        invoke: Invoke,
        repo: InMemoryTagRepository,
    ) -> None:
        seed_production(repo)
        result = invoke(["rollback", "prod", "--no-monitor"], input="2\nROLLBACK v2.5.0\n")

        assert result.exit_code == 0, result.output
        assert "Recent production deployments:" in result.output
        assert repo.remote[MARKER] == FIRST


class TestOtherEnvironments:
    """Development and staging rollbacks."""

    def test_dev_skip_confirm(self, invoke: Invoke, repo: InMemoryTagRepository) -> None:
        repo.seed_tag("v1.0.0-dev", FIRST)
        repo.seed_tag("v1.1.0-dev", HEAD)
        result = invoke(
            ["rollback", "dev", "--version", "v1.0.0-dev", "--skip-confirm", "--no-monitor"]
        )

        assert result.exit_code == 0, result.output
        assert repo.remote["v1.0.0-dev-rollback-1724850000"] == FIRST

    def test_no_history(self, invoke: Invoke) -> None:
        result = invoke(["rollback", "staging"])

        assert result.exit_code == 6
        assert "No previous deployments found for staging" in result.output

    def test_staging_not_supported(
        self,
        cli_runner: CliRunner,
        services: Services,
        repo: InMemoryTagRepository,
    ) -> None:
        repo.seed_tag("v1.0.0-staging", FIRST)
        services.selector = RollbackSelector(
            services.orchestrator,
            staging=StaticStagingCatalog(["storefront-web"]),
        )

        result = cli_runner.invoke(
            cli,
            ["rollback", "staging", "--version", "v1.0.0-staging"],
            obj={"services": services},
        )

        assert result.exit_code == 6
        assert "does not support the staging environment" in result.output
        assert repo.operations == []


class TestRollbackHistory:
    """The --history listing."""

    def test_lists_rollback_markers(self, invoke: Invoke, repo: InMemoryTagRepository) -> None:
        repo.seed_tag("v1.0.0", FIRST)
        repo.seed_tag("v1.0.0-rollback-100", FIRST)
        repo.seed_tag("v1.1.0-dev-rollback-300", FIRST)

        result = invoke(["rollback", "--history"])

        assert result.exit_code == 0
        lines = result.output.strip().splitlines()
        assert lines[0].startswith("v1.1.0-dev-rollback-300")
        assert lines[1].startswith("v1.0.0-rollback-100")

    def test_empty(self, invoke: Invoke) -> None:
        result = invoke(["rollback", "--history"])
        assert result.exit_code == 0
        assert "No deployments found" in result.output
