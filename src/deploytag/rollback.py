"""Rollback selector.

A rollback never moves an existing tag. It creates a fresh marker tag
``<target>-rollback-<epoch>`` pointing at the target's commit and pushes it,
which triggers the same pipeline a normal deployment does.

Example:
    >>> selector = RollbackSelector(orchestrator, staging=StaticStagingCatalog(["payments"]))
    >>> plan = selector.plan(Environment.PRODUCTION, "v2.5.0")
    >>> plan.rollback_tag.name
    'v2.5.0-rollback-1724850000'
    >>> selector.confirm(plan, operator)
    >>> selector.execute(plan)
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable
from typing import Protocol, runtime_checkable

import structlog

from deploytag.ci import RunProvider
from deploytag.deployment import DeploymentOrchestrator, Operator
from deploytag.errors import (
    DeploymentCancelledError,
    GitError,
    RunQueryError,
    StagingNotSupportedError,
    TargetNotFoundError,
)
from deploytag.monitor import StatusCallback, conclusion_for
from deploytag.schemas.deployment import RollbackPlan, TagDetails
from deploytag.schemas.runs import MonitorResult, WorkflowRun
from deploytag.tags import Environment, Tag, try_parse
from deploytag.versioning import VersionTrack

logger = structlog.get_logger(__name__)

# Runs fetched to annotate history entries with their last conclusion
HISTORY_RUN_LIMIT = 50


@runtime_checkable
class StagingCatalog(Protocol):
    """Which services have a staging environment."""

    @property
    def services(self) -> list[str]: ...

    def supports(self, service: str) -> bool: ...


class StaticStagingCatalog:
    """Staging catalog backed by a fixed list of service names."""

    def __init__(self, services: Iterable[str]) -> None:
        self._services = sorted({s.strip() for s in services if s.strip()})

    @property
    def services(self) -> list[str]:
        return list(self._services)

    def supports(self, service: str) -> bool:
        return service in self._services


def rollback_confirmation(target: Tag) -> str:
    """Exact text an operator must type to roll production back to ``target``."""
    return f"ROLLBACK {target.name}"


class RollbackSelector:
    """List rollback candidates, validate a target and publish a rollback tag.

    Args:
        orchestrator: Orchestrator whose repository, publish and observe
            primitives the rollback runs through.
        staging: Catalog of services that have a staging environment. Without
            one, staging rollbacks are refused.
        run_provider: CI provider used to annotate history with run
            conclusions (best effort).
        clock: Wall clock returning Unix seconds, injectable for tests.
    """

    def __init__(
        self,
        orchestrator: DeploymentOrchestrator,
        *,
        staging: StagingCatalog | None = None,
        run_provider: RunProvider | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.orchestrator = orchestrator
        self.repository = orchestrator.repository
        self.service = orchestrator.service
        self.prefix = orchestrator.prefix
        self.staging = staging
        self.run_provider = run_provider
        self._clock = clock
        self._log = logger.bind(service=self.service)

    def _track(self, environment: Environment, tags: Iterable[str] | None = None) -> VersionTrack:
        names = self.repository.list_tags() if tags is None else tags
        return VersionTrack.from_tags(environment, names, self.prefix)

    def _recent_runs(self) -> list[WorkflowRun]:
        if self.run_provider is None:
            return []
        try:
            return self.run_provider.list_recent_runs(limit=HISTORY_RUN_LIMIT)
        except RunQueryError as e:
            self._log.warning("history_run_query_failed", error=str(e))
            return []

    def _annotate(self, tags: Iterable[Tag]) -> list[TagDetails]:
        tags = list(tags)
        if not tags:
            return []
        runs = self._recent_runs()
        return [
            self.repository.tag_details(tag).model_copy(
                update={"run_status": conclusion_for(tag.name, runs)}
            )
            for tag in tags
        ]

    def history(self, environment: Environment, limit: int = 20) -> list[TagDetails]:
        """Deployment tags of ``environment``, highest version first.

        Each entry carries commit, author, date and message from git plus the
        conclusion of its last CI run, or ``unknown`` when no run correlates.
        """
        self.orchestrator.refresh_tags()
        return self._annotate(self._track(environment).descending()[:limit])

    def rollback_history(self, limit: int = 10) -> list[TagDetails]:
        """Recent rollback markers across all environments, newest first."""
        markers = [
            tag
            for tag in (try_parse(name, self.prefix) for name in self.repository.list_tags())
            if tag is not None and tag.is_rollback
        ]
        markers.sort(key=lambda t: (t.rollback_timestamp or 0, t.version), reverse=True)
        return self._annotate(markers[:limit])

    def ensure_supported(self, environment: Environment) -> None:
        """Refuse staging rollbacks for services without a staging environment.

        Raises:
            StagingNotSupportedError: Checked before any tag lookup.
        """
        if environment is not Environment.STAGING:
            return
        if self.staging is None or not self.staging.supports(self.service):
            supported = self.staging.services if self.staging is not None else []
            raise StagingNotSupportedError(self.service, supported)

    def validate(self, environment: Environment, target: str) -> Tag:
        """Check that ``target`` is an existing deployment tag of ``environment``.

        Raises:
            TargetNotFoundError: The target does not parse, belongs to another
                environment, is itself a rollback marker, or does not exist.
        """
        track = self._track(environment)
        available = [t.name for t in track.descending()[:20]]

        def reject(reason: str) -> TargetNotFoundError:
            return TargetNotFoundError(target, environment.value, reason, available)

        tag = try_parse(target, self.prefix)
        if tag is None:
            raise reject("is not a deployment tag")
        if tag.is_rollback:
            raise reject("is a rollback marker")
        if tag.environment is not environment:
            raise reject(f"belongs to {tag.environment}")
        if not self.repository.tag_exists(tag.name):
            raise reject("does not exist")
        return tag

    def changes_between(self, current: Tag, target: Tag, limit: int = 5) -> list[str]:
        """Commits in ``target..current``, the changes the rollback will revert."""
        if current == target:
            return []
        try:
            return self.repository.commit_range(current.name, target.name, limit)
        except GitError as e:
            self._log.warning("rollback_changes_unavailable", error=str(e))
            return []

    def _rollback_timestamp(self, target: Tag) -> int:
        previous = [
            t.rollback_timestamp
            for t in (try_parse(name, self.prefix) for name in self.repository.list_tags())
            if t is not None and t.is_rollback and t.base() == target
        ]
        timestamp = max([int(self._clock()), *((ts or 0) + 1 for ts in previous)])
        while self.repository.tag_exists(target.with_rollback(timestamp).name):
            timestamp += 1
        return timestamp

    def synthesize(self, environment: Environment, target: Tag, current: Tag) -> RollbackPlan:
        """Build the rollback tag for ``target``. Reads the repository, never mutates it."""
        rollback_tag = target.with_rollback(self._rollback_timestamp(target))
        operator = self.repository.user_name()
        return RollbackPlan(
            environment=environment,
            service=self.service,
            current=current,
            target=target,
            rollback_tag=rollback_tag,
            commit=self.repository.revision_of(target.name),
            message=f"Rollback {environment} from {current} to {target} by {operator}",
            operator=operator,
            changes=self.changes_between(current, target),
        )

    def plan(self, environment: Environment, target: str) -> RollbackPlan:
        """Validate ``target`` and synthesize the rollback.

        Raises:
            StagingNotSupportedError: Staging requested for an unsupported service.
            TargetNotFoundError: The target is not a valid tag of the environment.
        """
        self.ensure_supported(environment)
        self.orchestrator.refresh_tags()
        tag = self.validate(environment, target)
        current = self._track(environment).latest_tag or tag
        plan = self.synthesize(environment, tag, current)
        self._log.info(
            "rollback_planned",
            environment=environment.value,
            current=current.name,
            target=tag.name,
            rollback_tag=plan.rollback_tag.name,
        )
        return plan

    def confirm(
        self,
        plan: RollbackPlan,
        operator: Operator | None,
        *,
        skip_confirm: bool = False,
    ) -> None:
        """Ask the operator to approve ``plan``.

        Production always requires typing ``ROLLBACK <target>``; other
        environments take a yes/no answer that ``skip_confirm`` bypasses.

        Raises:
            DeploymentCancelledError: The operator declined.
        """
        if plan.environment is Environment.PRODUCTION:
            expected = rollback_confirmation(plan.target)
            prompt = f"Type '{expected}' to roll production back to {plan.target}"
            if operator is None or not operator.confirm_typed(prompt, expected):
                raise DeploymentCancelledError("Rollback cancelled")
            return

        if skip_confirm:
            return
        prompt = f"Roll back {plan.environment} from {plan.current} to {plan.target}?"
        if operator is None or not operator.confirm(prompt, default=False):
            raise DeploymentCancelledError("Rollback cancelled")

    def execute(
        self,
        plan: RollbackPlan,
        *,
        monitor: bool = True,
        on_status: StatusCallback | None = None,
    ) -> MonitorResult | None:
        """Push the rollback tag and optionally follow its run.

        Raises:
            PushError: The remote rejected the rollback tag.
        """
        self.orchestrator.publish(plan.rollback_tag.name, plan.commit, plan.message)
        self._log.info("rollback_published", rollback_tag=plan.rollback_tag.name)
        if not monitor:
            return None
        return self.orchestrator.observe(plan.rollback_tag.name, plan.commit, on_status)

    def rollback(
        self,
        environment: Environment,
        target: str,
        operator: Operator | None,
        *,
        skip_confirm: bool = False,
        monitor: bool = True,
        on_status: StatusCallback | None = None,
    ) -> tuple[RollbackPlan, MonitorResult | None]:
        """Plan, confirm and execute a rollback in one call."""
        plan = self.plan(environment, target)
        self.confirm(plan, operator, skip_confirm=skip_confirm)
        return plan, self.execute(plan, monitor=monitor, on_status=on_status)


__all__: list[str] = [
    "HISTORY_RUN_LIMIT",
    "RollbackSelector",
    "StagingCatalog",
    "StaticStagingCatalog",
    "rollback_confirmation",
]
