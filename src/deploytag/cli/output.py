"""Human-readable formatting for deploytag CLI output."""

from __future__ import annotations

from collections.abc import Sequence

from deploytag.cli.utils import info, success, warn
from deploytag.errors import DeploymentFailedError
from deploytag.schemas.deployment import DeploymentPlan, RollbackPlan, TagDetails
from deploytag.schemas.runs import MonitorOutcome, MonitorResult, RunConclusion, WorkflowRun
from deploytag.tags import Tag

_STATUS_MARKS = {
    RunConclusion.SUCCESS: "ok",
    RunConclusion.FAILURE: "FAILED",
    RunConclusion.UNKNOWN: "unknown",
}


def format_plan(plan: DeploymentPlan) -> str:
    """Format a deployment plan for review.

    Args:
        plan: Resolved deployment plan.

    Returns:
        Multi-line summary of what will be created and pushed.
    """
    action = "Rebuild" if plan.rebuild else "Create"
    lines = [
        "",
        "Deployment Plan",
        "=" * 40,
        f"Service:          {plan.service}",
        f"Environment:      {plan.environment}",
        f"Current Version:  {plan.previous}",
        f"New Version:      {plan.version}",
        f"Tag:              {plan.tag.name} ({action.lower()})",
        f"Commit:           {plan.commit[:12]}",
        f"Branch:           {plan.branch or '(detached HEAD)'}",
        f"Message:          {plan.message}",
    ]
    if plan.collision and not plan.rebuild:
        lines.append(f"Collision:        {plan.tag.name} already exists")
    for warning in plan.warnings:
        lines.append(f"Warning:          {warning.message}")
        lines.extend(f"                    {detail}" for detail in warning.details)
    lines.append("")
    return "\n".join(lines)


def format_rollback_plan(plan: RollbackPlan) -> str:
    """Format a rollback plan for confirmation."""
    lines = [
        "",
        "Rollback Plan",
        "=" * 40,
        f"Service:          {plan.service}",
        f"Environment:      {plan.environment}",
        f"From:             {plan.current}",
        f"To:               {plan.target}",
        f"Rollback Tag:     {plan.rollback_tag}",
        f"Commit:           {plan.commit[:12]}",
        f"Initiated By:     {plan.operator}",
    ]
    if plan.changes:
        lines.append("Changes Reverted:")
        lines.extend(f"  - {change}" for change in plan.changes)
    lines.append("")
    return "\n".join(lines)


def format_history(entries: Sequence[TagDetails], numbered: bool = False) -> str:
    """Format tag history as a table, one tag per line."""
    if not entries:
        return "No deployments found"
    lines = []
    for index, entry in enumerate(entries, start=1):
        date = entry.created_at.strftime("%Y-%m-%d %H:%M") if entry.created_at else "-"
        status = _STATUS_MARKS[entry.run_status]
        prefix = f"{index:>3}) " if numbered else ""
        lines.append(
            f"{prefix}{entry.name:<32} {entry.short_commit:<8} {date:<16} "
            f"{entry.author[:20]:<20} {status:<8} {entry.message}"
        )
    return "\n".join(lines)


def format_recent(tags: Sequence[Tag]) -> str:
    return ", ".join(t.name for t in tags) if tags else "none"


def report_status(run: WorkflowRun) -> None:
    """Print a CI run status change."""
    state = run.status if run.conclusion is None else f"{run.status} ({run.conclusion})"
    info(f"  Run {run.run_id}: {state}")


def report_monitor(
    result: MonitorResult | None,
    manual_url: str | None,
    *,
    external_sync: bool = False,
    argocd_url: str | None = None,
) -> None:
    """Print the monitoring outcome.

    Raises:
        DeploymentFailedError: If the run completed unsuccessfully.
    """
    if result is None:
        if manual_url:
            info(f"Monitor the deployment at: {manual_url}")
        return

    if result.outcome is MonitorOutcome.SUCCESS:
        success(f"CI run for {result.tag} completed successfully")
        if external_sync:
            info("Argo CD will sync the new image shortly.")
            if argocd_url:
                info(f"Check sync status at: {argocd_url}")
        return

    if result.outcome is MonitorOutcome.FAILURE:
        conclusion = result.run.conclusion if result.run and result.run.conclusion else "failure"
        raise DeploymentFailedError(result.tag, conclusion, result.run_url)

    warn(result.detail or f"Could not follow the CI run for {result.tag}")
    url = result.run_url or manual_url
    if url:
        info(f"Monitor manually at: {url}")


__all__: list[str] = [
    "format_history",
    "format_plan",
    "format_recent",
    "format_rollback_plan",
    "report_monitor",
    "report_status",
]
