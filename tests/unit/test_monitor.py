"""Unit tests for the run monitor.

The monitor is driven by FakeClock, so every sleep is recorded instead of
waited on and timeouts are exact.
"""

from __future__ import annotations

from collections.abc import Callable

from deploytag.errors import RunQueryError
from deploytag.monitor import MonitorConfig, RunMonitor, conclusion_for, find_matching_run
from deploytag.schemas.runs import MonitorOutcome, RunConclusion, WorkflowRun
from deploytag.testing import FakeClock, FakeRunProvider

SHA = "c0ffee0000000000000000000000000000000003"
MANUAL_URL = "https://github.com/acme/payments/actions"


def make_monitor(provider: FakeRunProvider | None, clock: FakeClock, **config: float) -> RunMonitor:
    return RunMonitor(provider, MonitorConfig(**config), clock=clock, sleep=clock.sleep)


class TestDiscovery:
    """Finding the run a tag push triggered."""

    def test_run_visible_after_delay(
        self,
        provider: FakeRunProvider,
        clock: FakeClock,
        make_run: Callable[..., WorkflowRun],
    ) -> None:
        """Discovery retries at the configured interval until the run appears."""
        provider.visible_after = 3
        provider.add_run(make_run(5, "v1.0.0", sha=SHA))

        run = make_monitor(provider, clock).find_run("v1.0.0", SHA)

        assert run is not None
        assert run.run_id == 5
        assert provider.list_calls == 4
        assert clock.sleeps == [2.0, 2.0, 2.0]

    def test_not_found_after_budget(self, provider: FakeRunProvider, clock: FakeClock) -> None:
        """Ten attempts, nine waits, then an observability gap with a manual URL."""
        result = make_monitor(provider, clock).watch("v1.0.0", SHA)

        assert result.outcome is MonitorOutcome.NOT_FOUND
        assert not result.observed
        assert result.manual_url == MANUAL_URL
        assert result.run_url == MANUAL_URL
        assert "after 10 attempts" in (result.detail or "")
        assert provider.list_calls == 10
        assert clock.sleeps == [2.0] * 9

    def test_query_errors_count_as_attempts(
        self,
        provider: FakeRunProvider,
        clock: FakeClock,
        make_run: Callable[..., WorkflowRun],
    ) -> None:
        provider.list_errors = 2
        provider.add_run(make_run(5, "v1.0.0"))

        assert make_monitor(provider, clock).find_run("v1.0.0") is not None
        assert provider.list_calls == 3

    def test_stale_run_of_repointed_tag_skipped(
        self,
        provider: FakeRunProvider,
        clock: FakeClock,
        make_run: Callable[..., WorkflowRun],
    ) -> None:
        """A run of the same tag name built from another commit is not ours."""
        provider.add_run(make_run(4, "v1.0.0-staging", sha="0ld5ha"))
        monitor = make_monitor(provider, clock, discovery_attempts=2)

        assert monitor.find_run("v1.0.0-staging", SHA) is None

        provider.add_run(make_run(6, "v1.0.0-staging", sha=SHA))
        run = monitor.find_run("v1.0.0-staging", SHA)
        assert run is not None
        assert run.run_id == 6

    def test_rebuild_at_same_commit_skips_earlier_run(
        self,
        provider: FakeRunProvider,
        clock: FakeClock,
        make_run: Callable[..., WorkflowRun],
    ) -> None:
        """A finished run of the previous build shares the SHA but predates the push."""
        provider.add_run(make_run(50, "v1.0.0-dev", conclusion="failure", sha=SHA))
        monitor = make_monitor(provider, clock)

        earlier = monitor.existing_runs("v1.0.0-dev")
        assert earlier == frozenset({50})

        provider.add_run(make_run(51, "v1.0.0-dev", sha=SHA))
        result = monitor.watch("v1.0.0-dev", SHA, ignore=earlier)

        assert result.outcome is MonitorOutcome.SUCCESS
        assert result.run is not None
        assert result.run.run_id == 51

    def test_only_earlier_run_visible(
        self,
        provider: FakeRunProvider,
        clock: FakeClock,
        make_run: Callable[..., WorkflowRun],
    ) -> None:
        provider.add_run(make_run(50, "v1.0.0-dev", conclusion="failure", sha=SHA))
        monitor = make_monitor(provider, clock, discovery_attempts=2)

        result = monitor.watch("v1.0.0-dev", SHA, ignore=monitor.existing_runs("v1.0.0-dev"))

        assert result.outcome is MonitorOutcome.NOT_FOUND
        assert result.run is None

    def test_existing_runs_query_failure(self, provider: FakeRunProvider, clock: FakeClock) -> None:
        provider.list_errors = 1
        assert make_monitor(provider, clock).existing_runs("v1.0.0") == frozenset()

    def test_no_provider(self, clock: FakeClock) -> None:
        result = make_monitor(None, clock).watch("v1.0.0")
        assert result.outcome is MonitorOutcome.NOT_FOUND
        assert result.manual_url is None
        assert result.detail == "no CI run provider configured"


class TestPolling:
    """Following a discovered run to a terminal state."""

    def test_success_reports_each_status_once(
        self,
        provider: FakeRunProvider,
        clock: FakeClock,
        make_run: Callable[..., WorkflowRun],
    ) -> None:
        provider.add_run(
            make_run(7, "v1.0.0", status="queued", conclusion=None),
            make_run(7, "v1.0.0", status="in_progress", conclusion=None),
            make_run(7, "v1.0.0", status="in_progress", conclusion=None),
            make_run(7, "v1.0.0"),
        )
        statuses: list[str] = []

        monitor = make_monitor(provider, clock)
        result = monitor.watch("v1.0.0", on_status=lambda r: statuses.append(r.status))

        assert result.outcome is MonitorOutcome.SUCCESS
        assert result.observed
        assert statuses == ["queued", "in_progress", "completed"]
        assert clock.sleeps == [5.0, 5.0, 5.0]
        assert result.run_url == "https://github.com/acme/payments/actions/runs/7"

    def test_failure(
        self,
        provider: FakeRunProvider,
        clock: FakeClock,
        make_run: Callable[..., WorkflowRun],
    ) -> None:
        provider.add_run(make_run(8, "v1.0.0", conclusion="failure"))
        result = make_monitor(provider, clock).watch("v1.0.0")

        assert result.outcome is MonitorOutcome.FAILURE
        assert result.run is not None
        assert result.run.conclusion == "failure"

    def test_cancelled_run_is_failure(
        self,
        provider: FakeRunProvider,
        clock: FakeClock,
        make_run: Callable[..., WorkflowRun],
    ) -> None:
        provider.add_run(make_run(8, "v1.0.0", conclusion="cancelled"))
        assert make_monitor(provider, clock).watch("v1.0.0").outcome is MonitorOutcome.FAILURE

    def test_timeout(
        self,
        provider: FakeRunProvider,
        clock: FakeClock,
        make_run: Callable[..., WorkflowRun],
    ) -> None:
        """A run that never completes ends in TIMEOUT, not FAILURE."""
        running = make_run(9, "v1.0.0", status="in_progress", conclusion=None)
        provider.add_run(running, running)

        result = make_monitor(provider, clock, timeout=30, poll_interval=10).watch("v1.0.0")

        assert result.outcome is MonitorOutcome.TIMEOUT
        assert clock.sleeps == [10.0, 10.0, 10.0]
        assert result.elapsed_seconds == 30.0
        assert result.manual_url == MANUAL_URL

    def test_last_poll_shortened_to_budget(
        self,
        provider: FakeRunProvider,
        clock: FakeClock,
        make_run: Callable[..., WorkflowRun],
    ) -> None:
        running = make_run(9, "v1.0.0", status="in_progress", conclusion=None)
        provider.add_run(running, running)

        make_monitor(provider, clock, timeout=12, poll_interval=5).watch("v1.0.0")

        assert clock.sleeps == [5.0, 5.0, 2.0]

    def test_discovery_counts_toward_timeout(
        self,
        provider: FakeRunProvider,
        clock: FakeClock,
        make_run: Callable[..., WorkflowRun],
    ) -> None:
        """The budget covers the whole session, not only polling."""
        provider.visible_after = 2
        running = make_run(9, "v1.0.0", status="in_progress", conclusion=None)
        provider.add_run(running, running)

        result = make_monitor(provider, clock, timeout=10, poll_interval=5).watch("v1.0.0")

        assert result.outcome is MonitorOutcome.TIMEOUT
        assert clock.sleeps == [2.0, 2.0, 5.0, 1.0]
        assert result.elapsed_seconds == 10.0

    def test_lost_contact(
        self,
        provider: FakeRunProvider,
        clock: FakeClock,
        make_run: Callable[..., WorkflowRun],
    ) -> None:
        """Consecutive poll failures end monitoring as an observability gap."""
        provider.add_run(
            make_run(10, "v1.0.0", status="in_progress", conclusion=None),
            RunQueryError("GitHub API returned 502"),
        )

        result = make_monitor(provider, clock).watch("v1.0.0")

        assert result.outcome is MonitorOutcome.NOT_FOUND
        assert result.run is not None
        assert "lost contact" in (result.detail or "")
        assert provider.get_calls == 3

    def test_transient_poll_failure_recovers(
        self,
        provider: FakeRunProvider,
        clock: FakeClock,
        make_run: Callable[..., WorkflowRun],
    ) -> None:
        provider.add_run(
            make_run(10, "v1.0.0", status="in_progress", conclusion=None),
            RunQueryError("GitHub API returned 502"),
            make_run(10, "v1.0.0"),
        )
        assert make_monitor(provider, clock).watch("v1.0.0").outcome is MonitorOutcome.SUCCESS


class TestMatching:
    """Run to tag correlation helpers."""

    def test_fully_qualified_ref(self, make_run: Callable[..., WorkflowRun]) -> None:
        run = make_run(1, "refs/tags/v1.0.0")
        assert run.matches_tag("v1.0.0")
        assert not run.matches_tag("v1.0.0-dev")

    def test_short_sha_matches(self, make_run: Callable[..., WorkflowRun]) -> None:
        assert make_run(1, "v1.0.0", sha=SHA).matches_tag("v1.0.0", SHA[:7])

    def test_first_match_is_newest(self, make_run: Callable[..., WorkflowRun]) -> None:
        runs = [make_run(3, "v1.0.0"), make_run(2, "v1.0.0"), make_run(1, "v0.9.0")]
        match = find_matching_run(runs, "v1.0.0")
        assert match is not None
        assert match.run_id == 3

    def test_conclusion_for(self, make_run: Callable[..., WorkflowRun]) -> None:
        """Only completed runs map to success or failure; everything else is unknown."""
        runs = [
            make_run(1, "v1.0.0"),
            make_run(2, "v1.1.0", conclusion="failure"),
            make_run(3, "v1.2.0", status="in_progress", conclusion=None),
        ]
        assert conclusion_for("v1.0.0", runs) is RunConclusion.SUCCESS
        assert conclusion_for("v1.1.0", runs) is RunConclusion.FAILURE
        assert conclusion_for("v1.2.0", runs) is RunConclusion.UNKNOWN
        assert conclusion_for("v0.1.0", runs) is RunConclusion.UNKNOWN
