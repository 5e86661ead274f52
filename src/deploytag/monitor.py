"""Run monitor: follow the CI run a tag push triggered.

The CI system offers no callback, and a run only appears some time after the
push. Monitoring therefore happens in two bounded phases:

1. Discovery: list recent runs until one was triggered by the tag.
2. Polling: re-read that run until it completes or the timeout elapses.

Not finding a run, or running out of time, is an observability gap rather
than a failure. The result then carries a URL for following the run by hand.

Example:
    >>> monitor = RunMonitor(provider, MonitorConfig(timeout=300))
    >>> result = monitor.watch("v1.4.0", commit="3f2a9c1")
    >>> result.outcome
    <MonitorOutcome.SUCCESS: 'success'>
"""

from __future__ import annotations

import time
from collections.abc import Callable, Collection, Iterable

import structlog
from pydantic import BaseModel, ConfigDict, Field

from deploytag.ci import RunProvider
from deploytag.errors import RunQueryError
from deploytag.schemas.runs import MonitorOutcome, MonitorResult, RunConclusion, WorkflowRun

logger = structlog.get_logger(__name__)

StatusCallback = Callable[[WorkflowRun], None]


class MonitorConfig(BaseModel):
    """Bounds and cadence for one monitoring session.

    Attributes:
        discovery_attempts: How many times to look for the run.
        discovery_interval: Seconds between discovery attempts.
        recent_runs: How many recent runs each discovery attempt inspects.
        poll_interval: Seconds between status polls.
        timeout: Maximum seconds for the whole session, discovery included.
        max_query_failures: Consecutive failed polls before giving up.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    discovery_attempts: int = Field(default=10, ge=1, description="Discovery attempts")
    discovery_interval: float = Field(default=2.0, ge=0.0, description="Seconds between attempts")
    recent_runs: int = Field(default=5, ge=1, le=100, description="Runs inspected per attempt")
    poll_interval: float = Field(default=5.0, ge=0.0, description="Seconds between polls")
    timeout: float = Field(default=600.0, ge=0.0, description="Session budget in seconds")
    max_query_failures: int = Field(default=3, ge=1, description="Consecutive poll failures")


def find_matching_run(
    runs: Iterable[WorkflowRun],
    tag: str,
    commit: str | None = None,
    ignore: Collection[int] = (),
) -> WorkflowRun | None:
    """Return the first run triggered by ``tag`` (runs are listed newest first).

    Runs whose id is in ``ignore`` predate the push being watched and are skipped.
    """
    for run in runs:
        if run.run_id not in ignore and run.matches_tag(tag, commit):
            return run
    return None


def conclusion_for(tag: str, runs: Iterable[WorkflowRun]) -> RunConclusion:
    """Map a tag to the conclusion of its most recent run.

    Tags without a correlated run, or whose run is still going, are UNKNOWN.
    """
    run = find_matching_run(runs, tag)
    if run is None:
        return RunConclusion.UNKNOWN
    return run.to_conclusion()


class RunMonitor:
    """Discover and follow the CI run of a pushed tag.

    Args:
        provider: CI run provider, or None when no CI backend is available.
        config: Monitoring bounds.
        manual_url: Where operators can follow runs by hand. Defaults to the
            provider's Actions page.
        clock: Monotonic clock, injectable for tests.
        sleep: Sleep function, injectable for tests.
    """

    def __init__(
        self,
        provider: RunProvider | None,
        config: MonitorConfig | None = None,
        *,
        manual_url: str | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.provider = provider
        self.config = config or MonitorConfig()
        self.manual_url = manual_url or (provider.actions_url if provider is not None else None)
        self._clock = clock
        self._sleep = sleep

    def existing_runs(self, tag: str) -> frozenset[int]:
        """Ids of runs ``tag`` has already triggered, read before re-pushing it.

        A rebuild at the same commit cannot tell its own run from an earlier one
        by SHA, so the earlier ids are excluded from discovery instead. A failed
        query yields an empty set.
        """
        if self.provider is None:
            return frozenset()
        try:
            runs = self.provider.list_recent_runs(limit=self.config.recent_runs)
        except RunQueryError as e:
            logger.warning("run_baseline_query_failed", tag=tag, error=str(e))
            return frozenset()
        return frozenset(run.run_id for run in runs if run.matches_tag(tag))

    def find_run(
        self,
        tag: str,
        commit: str | None = None,
        ignore: Collection[int] = (),
    ) -> WorkflowRun | None:
        """Look for the run triggered by ``tag`` within the discovery budget.

        Query errors count as attempts and are not retried on their own.
        """
        if self.provider is None:
            return None

        log = logger.bind(tag=tag)
        attempts = self.config.discovery_attempts
        for attempt in range(1, attempts + 1):
            try:
                runs = self.provider.list_recent_runs(limit=self.config.recent_runs)
            except RunQueryError as e:
                log.warning("run_discovery_query_failed", attempt=attempt, error=str(e))
            else:
                run = find_matching_run(runs, tag, commit, ignore)
                if run is not None:
                    log.info("run_discovered", run_id=run.run_id, attempt=attempt)
                    return run
                log.debug("run_not_yet_visible", attempt=attempt)

            if attempt < attempts:
                self._sleep(self.config.discovery_interval)

        log.info("run_not_found", attempts=attempts)
        return None

    def watch(
        self,
        tag: str,
        commit: str | None = None,
        on_status: StatusCallback | None = None,
        ignore: Collection[int] = (),
    ) -> MonitorResult:
        """Follow the run of ``tag`` to a terminal state.

        The timeout covers the whole session, discovery included.

        Args:
            tag: Pushed tag name.
            commit: Commit the tag points at; runs built from another commit are skipped.
            on_status: Called with the run each time its status changes.
            ignore: Ids of runs that existed before the push (see ``existing_runs``).

        Returns:
            SUCCESS or FAILURE once the run completes, NOT_FOUND when it never
            appears (or contact is lost), TIMEOUT when the budget runs out.
        """
        start = self._clock()
        log = logger.bind(tag=tag)

        def result(
            outcome: MonitorOutcome,
            run: WorkflowRun | None = None,
            detail: str | None = None,
        ) -> MonitorResult:
            return MonitorResult(
                outcome=outcome,
                tag=tag,
                run=run,
                manual_url=self.manual_url,
                elapsed_seconds=max(0.0, self._clock() - start),
                detail=detail,
            )

        if self.provider is None:
            return result(MonitorOutcome.NOT_FOUND, detail="no CI run provider configured")

        run = self.find_run(tag, commit, ignore)
        if run is None:
            return result(
                MonitorOutcome.NOT_FOUND,
                detail=f"no run for {tag} after {self.config.discovery_attempts} attempts",
            )

        if on_status is not None:
            on_status(run)
        last_status = run.status
        failures = 0

        while not run.completed:
            elapsed = self._clock() - start
            if elapsed >= self.config.timeout:
                log.warning("run_monitor_timeout", run_id=run.run_id, status=run.status)
                return result(
                    MonitorOutcome.TIMEOUT,
                    run=run,
                    detail=f"run still {run.status} after {self.config.timeout:.0f}s",
                )

            self._sleep(min(self.config.poll_interval, self.config.timeout - elapsed))
            try:
                current = self.provider.get_run(run.run_id)
            except RunQueryError as e:
                failures += 1
                log.warning("run_poll_failed", run_id=run.run_id, failures=failures, error=str(e))
                if failures >= self.config.max_query_failures:
                    return result(
                        MonitorOutcome.NOT_FOUND,
                        run=run,
                        detail=f"lost contact with the CI system: {e}",
                    )
                continue

            failures = 0
            run = current
            if run.status != last_status:
                log.debug("run_status_changed", run_id=run.run_id, status=run.status)
                last_status = run.status
                if on_status is not None:
                    on_status(run)

        outcome = MonitorOutcome.SUCCESS if run.succeeded else MonitorOutcome.FAILURE
        log.info("run_completed", run_id=run.run_id, conclusion=run.conclusion)
        return result(outcome, run=run)


__all__: list[str] = [
    "MonitorConfig",
    "RunMonitor",
    "StatusCallback",
    "conclusion_for",
    "find_matching_run",
]
