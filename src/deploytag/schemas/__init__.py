"""Pydantic schemas shared by the deployment, rollback and monitoring components."""

from __future__ import annotations

from deploytag.schemas.deployment import (
    CollisionResolution,
    DeploymentIntent,
    DeploymentPlan,
    DeploymentResult,
    DeploymentStatus,
    IncrementKind,
    PreconditionWarning,
    RollbackPlan,
    TagDetails,
)
from deploytag.schemas.runs import (
    MonitorOutcome,
    MonitorResult,
    RunConclusion,
    WorkflowRun,
)

__all__: list[str] = [
    "CollisionResolution",
    "DeploymentIntent",
    "DeploymentPlan",
    "DeploymentResult",
    "DeploymentStatus",
    "IncrementKind",
    "MonitorOutcome",
    "MonitorResult",
    "PreconditionWarning",
    "RollbackPlan",
    "RunConclusion",
    "TagDetails",
    "WorkflowRun",
]
