"""CI run schemas.

Key Components:
    RunConclusion: Tri-state view of a run's outcome used in history listings
    WorkflowRun: One external pipeline execution, as reported by the CI system
    MonitorOutcome: Terminal state of a monitoring session
    MonitorResult: Outcome plus the run and manual-monitoring pointer
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class RunConclusion(str, Enum):
    """Last known result of a tag's CI run.

    UNKNOWN is used whenever the run cannot be correlated to the tag. It is
    never rendered as success.
    """

    SUCCESS = "success"
    FAILURE = "failure"
    UNKNOWN = "unknown"


class WorkflowRun(BaseModel):
    """A CI pipeline run triggered by a tag push.

    Attributes:
        run_id: CI-side run identifier.
        status: Lifecycle status (queued, in_progress, completed, ...).
        conclusion: Final conclusion once completed (success, failure, cancelled, ...).
        head_branch: Ref that triggered the run; for tag pushes the tag name.
        head_sha: Commit the run built.
        url: Link to the run page.

    Examples:
        >>> run = WorkflowRun(run_id=42, status="completed", conclusion="success",
        ...                   head_branch="v1.0.0")
        >>> run.matches_tag("v1.0.0")
        True
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    run_id: int = Field(..., description="CI run identifier")
    status: str = Field(default="queued", description="Run lifecycle status")
    conclusion: str | None = Field(default=None, description="Run conclusion when completed")
    head_branch: str | None = Field(default=None, description="Triggering ref name")
    head_sha: str | None = Field(default=None, description="Commit SHA the run built")
    url: str | None = Field(default=None, description="Run page URL")
    name: str | None = Field(default=None, description="Workflow name")
    created_at: datetime | None = Field(default=None, description="When the run was created")

    @property
    def completed(self) -> bool:
        return self.status == "completed"

    @property
    def succeeded(self) -> bool:
        return self.completed and self.conclusion == "success"

    def matches_tag(self, tag: str, commit: str | None = None) -> bool:
        """Check whether this run was triggered by ``tag``.

        The trigger ref must equal the tag name or its fully-qualified form.
        When ``commit`` is given and the run reports a head SHA, the SHAs must
        agree as well, which filters out stale runs of a re-pointed tag.
        """
        if self.head_branch not in (tag, f"refs/tags/{tag}"):
            return False
        if commit and self.head_sha:
            return self.head_sha.startswith(commit) or commit.startswith(self.head_sha)
        return True

    def to_conclusion(self) -> RunConclusion:
        if not self.completed or self.conclusion is None:
            return RunConclusion.UNKNOWN
        if self.conclusion == "success":
            return RunConclusion.SUCCESS
        return RunConclusion.FAILURE


class MonitorOutcome(str, Enum):
    """Terminal state of a monitoring session.

    NOT_FOUND and TIMEOUT are observability gaps, not failures: the deployment
    may still be proceeding, it is just unobserved.
    """

    SUCCESS = "success"
    FAILURE = "failure"
    NOT_FOUND = "not_found"
    TIMEOUT = "timeout"


class MonitorResult(BaseModel):
    """Result of watching the CI system react to a pushed tag."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    outcome: MonitorOutcome = Field(..., description="Terminal monitoring state")
    tag: str = Field(..., description="Tag that was monitored")
    run: WorkflowRun | None = Field(default=None, description="Run that was found, if any")
    manual_url: str | None = Field(
        default=None,
        description="Where to monitor by hand when the run was not observed to completion",
    )
    elapsed_seconds: float = Field(default=0.0, ge=0.0, description="Time spent monitoring")
    detail: str | None = Field(default=None, description="Reason for an observability gap")

    @property
    def observed(self) -> bool:
        return self.outcome in (MonitorOutcome.SUCCESS, MonitorOutcome.FAILURE)

    @property
    def run_url(self) -> str | None:
        if self.run is not None and self.run.url:
            return self.run.url
        return self.manual_url


__all__: list[str] = [
    "MonitorOutcome",
    "MonitorResult",
    "RunConclusion",
    "WorkflowRun",
]
