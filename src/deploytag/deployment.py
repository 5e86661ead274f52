"""Deployment orchestrator.

Turns a ``DeploymentIntent`` into a pushed tag. One invocation walks:

    VALIDATE -> RESOLVE_VERSION -> CHECK_COLLISION -> CREATE | REBUILD -> PUSH -> MONITOR

Every gate before PUSH may abort, and nothing is mutated until all gates have
passed. Rebuild is the only path that moves an existing tag.

Example:
    >>> orchestrator = DeploymentOrchestrator(GitRepository(), monitor, service="payments")
    >>> intent = DeploymentIntent(environment=Environment.STAGING, increment="minor")
    >>> result = orchestrator.deploy(intent, operator)
    >>> result.tag_name
    'v1.3.0-staging'
"""

from __future__ import annotations

from collections.abc import Collection, Iterable, Sequence
from typing import TYPE_CHECKING, Protocol

import structlog

from deploytag.errors import (
    CollisionError,
    DeploymentCancelledError,
    GitError,
    HotfixDisabledError,
    PushError,
)
from deploytag.monitor import RunMonitor, StatusCallback
from deploytag.repository import TagRepository
from deploytag.schemas.deployment import (
    CollisionResolution,
    DeploymentIntent,
    DeploymentPlan,
    DeploymentResult,
    DeploymentStatus,
    PreconditionWarning,
)
from deploytag.schemas.runs import MonitorResult
from deploytag.tags import DEFAULT_PREFIX, Environment, Tag, Version, try_parse
from deploytag.versioning import resolve_version

if TYPE_CHECKING:
    from deploytag.config import DeployConfig

logger = structlog.get_logger(__name__)

HOTFIX_MESSAGE = "Hotfix deployment"

# Uncommitted files listed in the warning before it is truncated
_MAX_CHANGE_LINES = 10


class Operator(Protocol):
    """The human (or script) answering the orchestrator's gates.

    Every gate defaults to "do not proceed".
    """

    def confirm(self, prompt: str, default: bool = False) -> bool: ...

    def confirm_typed(self, prompt: str, expected: str) -> bool: ...

    def override_warning(self, warning: PreconditionWarning) -> bool: ...

    def resolve_collision(self, tag: str) -> CollisionResolution: ...

    def request_version(self, current: Version) -> str | None: ...

    def show_plan(self, plan: DeploymentPlan) -> None: ...


def default_message(
    service: str,
    environment: Environment,
    version: Version,
    *,
    rebuild: bool = False,
    hotfix: bool = False,
) -> str:
    """Default tag annotation for a deployment."""
    if hotfix:
        return HOTFIX_MESSAGE
    if rebuild:
        return f"Rebuild {service} {version} for {environment}"
    return f"Deploy {service} {version} to {environment}"


def production_confirmation(tag: Tag) -> str:
    """Exact text an operator must type to deploy ``tag`` to production."""
    return f"DEPLOY {tag.name}"


class DeploymentOrchestrator:
    """Resolve, gate, create, push and monitor deployment tags.

    Args:
        repository: Tag repository to read and mutate.
        monitor: Run monitor, or None to skip monitoring entirely.
        service: Service name used in tag messages.
        prefix: Version tag prefix.
        deploy_branches: Branches production may be deployed from without a warning.
        hotfix_enabled: Whether hotfix deployments are allowed.
        preview_gate: Show the plan and ask a final "proceed?" before mutating.
        external_sync: The deployment target syncs after CI (e.g. Argo CD),
            so a successful run does not yet mean the service is live.
    """

    def __init__(
        self,
        repository: TagRepository,
        monitor: RunMonitor | None = None,
        *,
        service: str,
        prefix: str = DEFAULT_PREFIX,
        deploy_branches: Sequence[str] = ("master", "main"),
        hotfix_enabled: bool = True,
        preview_gate: bool = False,
        external_sync: bool = False,
    ) -> None:
        self.repository = repository
        self.monitor = monitor
        self.service = service
        self.prefix = prefix
        self.deploy_branches = tuple(deploy_branches)
        self.hotfix_enabled = hotfix_enabled
        self.preview_gate = preview_gate
        self.external_sync = external_sync
        self._log = logger.bind(service=service)

    @classmethod
    def from_config(
        cls,
        config: DeployConfig,
        repository: TagRepository,
        monitor: RunMonitor | None = None,
    ) -> DeploymentOrchestrator:
        return cls(
            repository,
            monitor,
            service=config.service_name,
            prefix=config.version_prefix,
            deploy_branches=config.deploy_branches,
            hotfix_enabled=config.enable_hotfix,
            preview_gate=config.enable_preview,
            external_sync=config.external_sync,
        )

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def refresh_tags(self) -> list[str]:
        """Fetch remote tags (best effort) and list the local ones."""
        try:
            self.repository.fetch_tags()
        except GitError as e:
            self._log.warning("tag_fetch_failed", error=str(e))
        return self.repository.list_tags()

    def plan(self, intent: DeploymentIntent) -> DeploymentPlan:
        """Resolve an intent into a plan. Reads the repository, never mutates it.

        Raises:
            HotfixDisabledError: If a hotfix is requested while disabled.
            VersionValidationError: On a malformed explicit version or an empty rebuild.
        """
        if intent.hotfix and not self.hotfix_enabled:
            raise HotfixDisabledError(self.service)
        return self._build_plan(intent, self.refresh_tags())

    def _build_plan(self, intent: DeploymentIntent, tags: Iterable[str]) -> DeploymentPlan:
        resolution = resolve_version(intent, tags, self.prefix)
        tag = Tag(environment=intent.environment, version=resolution.version, prefix=self.prefix)
        branch = self.repository.current_branch()

        plan = DeploymentPlan(
            intent=intent,
            service=self.service,
            previous=resolution.previous,
            tag=tag,
            commit=self.repository.head_commit(),
            branch=branch,
            message=intent.message
            or default_message(
                self.service,
                intent.environment,
                resolution.version,
                rebuild=intent.rebuild,
                hotfix=intent.hotfix,
            ),
            collision=self.repository.tag_exists(tag.name),
            rebuild=intent.rebuild,
            warnings=self._check_preconditions(intent.environment, branch),
        )
        self._log.debug(
            "deployment_planned",
            tag=tag.name,
            previous=str(resolution.previous),
            mode=resolution.mode.value,
            collision=plan.collision,
        )
        return plan

    def _check_preconditions(
        self,
        environment: Environment,
        branch: str | None,
    ) -> list[PreconditionWarning]:
        warnings: list[PreconditionWarning] = []

        changes = self.repository.uncommitted_changes()
        if changes:
            details = changes[:_MAX_CHANGE_LINES]
            if len(changes) > _MAX_CHANGE_LINES:
                details.append(f"... and {len(changes) - _MAX_CHANGE_LINES} more")
            warnings.append(
                PreconditionWarning(
                    code="uncommitted_changes",
                    message="You have uncommitted changes",
                    details=details,
                )
            )

        if environment is Environment.PRODUCTION and branch not in self.deploy_branches:
            allowed = " or ".join(self.deploy_branches)
            warnings.append(
                PreconditionWarning(
                    code="branch_not_allowed",
                    message=(
                        f"Production deployments should be made from {allowed}, "
                        f"current branch is {branch or 'a detached HEAD'}"
                    ),
                )
            )
        return warnings

    # ------------------------------------------------------------------
    # Gates
    # ------------------------------------------------------------------

    def _pass_warnings(self, plan: DeploymentPlan, operator: Operator | None) -> None:
        for warning in plan.warnings:
            if operator is None or not operator.override_warning(warning):
                raise DeploymentCancelledError(f"Deployment cancelled: {warning.message}")
            self._log.info("precondition_overridden", code=warning.code)

    def _resolve_collisions(
        self, plan: DeploymentPlan, operator: Operator | None
    ) -> DeploymentPlan:
        while plan.collision and not plan.rebuild:
            if operator is None:
                raise CollisionError(plan.tag.name)

            choice = operator.resolve_collision(plan.tag.name)
            self._log.info("collision_resolved", tag=plan.tag.name, choice=choice.value)

            if choice is CollisionResolution.REBUILD:
                update: dict[str, object] = {"rebuild": True}
                if plan.intent.message is None and not plan.intent.hotfix:
                    update["message"] = default_message(
                        self.service, plan.environment, plan.version, rebuild=True
                    )
                plan = plan.model_copy(update=update)
            elif choice is CollisionResolution.DIFFERENT_VERSION:
                requested = operator.request_version(plan.previous)
                if not requested:
                    raise DeploymentCancelledError(
                        "Deployment cancelled. Run again with a different version.",
                        exit_code=0,
                    )
                intent = DeploymentIntent(
                    **plan.intent.model_dump(exclude={"increment", "explicit_version", "hotfix"}),
                    explicit_version=requested,
                )
                plan = self._build_plan(intent, self.repository.list_tags())
            else:
                raise DeploymentCancelledError("Deployment cancelled")
        return plan

    def _pass_final_gates(self, plan: DeploymentPlan, operator: Operator | None) -> None:
        if self.preview_gate:
            if operator is None:
                raise DeploymentCancelledError("Deployment cancelled: preview not confirmed")
            operator.show_plan(plan)
            if not operator.confirm("Proceed with deployment?", default=False):
                raise DeploymentCancelledError("Deployment cancelled")

        if plan.environment is Environment.PRODUCTION:
            expected = production_confirmation(plan.tag)
            prompt = f"Type '{expected}' to deploy {plan.tag.name} to production"
            if operator is None or not operator.confirm_typed(prompt, expected):
                raise DeploymentCancelledError("Production deployment cancelled")

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def deploy(
        self,
        intent: DeploymentIntent,
        operator: Operator | None = None,
        on_status: StatusCallback | None = None,
    ) -> DeploymentResult:
        """Run one deployment invocation end to end.

        A dry run returns the plan without asking any gate. With ``operator``
        None every gate is declined and a collision raises ``CollisionError``.

        Raises:
            DeploymentCancelledError: A gate was declined. Nothing was mutated.
            CollisionError: The tag exists and no operator can resolve it.
            PushError: The remote rejected the tag.
        """
        plan = self.plan(intent)
        if intent.dry_run:
            self._log.info("deployment_previewed", tag=plan.tag.name)
            return DeploymentResult(
                status=DeploymentStatus.PREVIEW, plan=plan, rebuilt=plan.rebuild
            )

        self._pass_warnings(plan, operator)
        plan = self._resolve_collisions(plan, operator)
        self._pass_final_gates(plan, operator)

        # Runs of the tag's previous build, which may share the commit
        earlier_runs: frozenset[int] = frozenset()
        if intent.monitor and plan.rebuild and self.monitor is not None:
            earlier_runs = self.monitor.existing_runs(plan.tag.name)

        self.publish(plan.tag.name, plan.commit, plan.message, force=plan.rebuild)

        monitor_result = None
        if intent.monitor:
            monitor_result = self.observe(
                plan.tag.name, plan.commit, on_status, ignore=earlier_runs
            )

        return DeploymentResult(
            status=DeploymentStatus.DEPLOYED,
            plan=plan,
            rebuilt=plan.rebuild,
            monitor=monitor_result,
            manual_url=self.monitor.manual_url if self.monitor is not None else None,
            external_sync_hint=self.external_sync,
        )

    def publish(self, tag: str, commit: str, message: str, *, force: bool = False) -> None:
        """Create ``tag`` at ``commit`` and push it.

        With ``force`` the tag is rebuilt: the local tag and the remote ref are
        deleted first, then the tag is recreated and force-pushed.

        If the push is rejected the tag created here is deleted again, so the
        local repository does not keep a tag the remote never accepted. A
        rejected rebuild instead puts the original tag back locally and tries
        to push it back, so the version is not lost from its track.

        Raises:
            PushError: The remote rejected the push (git's message kept verbatim).
        """
        log = self._log.bind(tag=tag, commit=commit[:12])
        original: tuple[str, str] | None = None
        if force:
            if self.repository.tag_exists(tag):
                original = self._snapshot_tag(tag, message)
                self.repository.delete_tag(tag)
            self.repository.delete_remote_tag(tag)
            log.info("tag_rebuild_started")

        self.repository.create_tag(tag, commit, message, force=force)
        try:
            self.repository.push_tag(tag, force=force)
        except PushError:
            if original is None:
                log.warning("tag_push_failed_cleanup")
                self.repository.delete_tag(tag)
            else:
                self._restore_tag(tag, *original)
            raise
        log.info("tag_published", force=force)

    def _snapshot_tag(self, tag: str, fallback_message: str) -> tuple[str, str]:
        parsed = try_parse(tag, self.prefix)
        if parsed is None:
            return self.repository.revision_of(tag), fallback_message
        details = self.repository.tag_details(parsed)
        return details.commit, details.message or fallback_message

    def _restore_tag(self, tag: str, commit: str, message: str) -> None:
        log = self._log.bind(tag=tag, commit=commit[:12])
        self.repository.create_tag(tag, commit, message, force=True)
        try:
            self.repository.push_tag(tag, force=True)
        except PushError as e:
            log.warning("tag_restore_push_failed", error=e.detail)
            return
        log.warning("tag_rebuild_reverted")

    def observe(
        self,
        tag: str,
        commit: str | None = None,
        on_status: StatusCallback | None = None,
        *,
        ignore: Collection[int] = (),
    ) -> MonitorResult | None:
        """Monitor the run of a pushed tag. Returns None when monitoring is off."""
        if self.monitor is None:
            return None
        return self.monitor.watch(tag, commit, on_status, ignore=ignore)

    def recent_tags(self, limit: int = 5) -> list[Tag]:
        """Highest-versioned deployment tags across all environments."""
        parsed = (try_parse(name, self.prefix) for name in self.repository.list_tags())
        tags = [t for t in parsed if t is not None]
        deployments = [t for t in tags if not t.is_rollback]
        deployments.sort(key=lambda t: (t.version, t.name), reverse=True)
        return deployments[:limit]


__all__: list[str] = [
    "HOTFIX_MESSAGE",
    "DeploymentOrchestrator",
    "Operator",
    "default_message",
    "production_confirmation",
]
