"""Deployment and rollback schemas.

Key Components:
    IncrementKind: Semantic version bump policy
    DeploymentIntent: Ephemeral request built per invocation, never persisted
    PreconditionWarning: Operator-overridable warning raised during validation
    DeploymentPlan: Resolved deployment before any mutation
    DeploymentResult: What an invocation did
    CollisionResolution: The three ways out of an existing tag
    TagDetails: A tag with provenance read from git
    RollbackPlan: Synthesized rollback tag pointed at a historical commit
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator
from typing_extensions import Self

from deploytag.schemas.runs import MonitorResult, RunConclusion
from deploytag.tags import Environment, Tag, Version


class IncrementKind(str, Enum):
    """Which version field to bump. Lower-order fields reset to zero."""

    MAJOR = "major"
    MINOR = "minor"
    PATCH = "patch"


class DeploymentIntent(BaseModel):
    """A deployment request.

    ``increment`` and ``explicit_version`` are mutually exclusive. A hotfix is
    a production deployment with a fixed patch increment.

    Examples:
        >>> intent = DeploymentIntent(environment=Environment.DEVELOPMENT)
        >>> intent.increment_kind
        <IncrementKind.PATCH: 'patch'>
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    environment: Environment = Field(..., description="Target environment")
    increment: IncrementKind | None = Field(
        default=None,
        description="Version bump policy (defaults to patch)",
    )
    explicit_version: str | None = Field(
        default=None,
        description="Caller-supplied X.Y.Z version",
    )
    rebuild: bool = Field(default=False, description="Re-point the latest tag instead of bumping")
    message: str | None = Field(default=None, description="Tag annotation")
    dry_run: bool = Field(default=False, description="Preview only, no mutation")
    monitor: bool = Field(default=True, description="Watch the CI run after pushing")
    hotfix: bool = Field(default=False, description="Production patch hotfix")

    @model_validator(mode="after")
    def validate_version_source(self) -> Self:
        """Reject conflicting version sources."""
        if self.increment is not None and self.explicit_version is not None:
            msg = "increment and explicit_version are mutually exclusive"
            raise ValueError(msg)
        if self.rebuild and self.explicit_version is not None:
            msg = "rebuild reuses the latest version and cannot take an explicit version"
            raise ValueError(msg)
        if self.hotfix:
            if self.environment is not Environment.PRODUCTION:
                msg = "hotfix deployments always target production"
                raise ValueError(msg)
            if self.increment not in (None, IncrementKind.PATCH) or self.explicit_version:
                msg = "hotfix deployments always use a patch increment"
                raise ValueError(msg)
        return self

    @property
    def increment_kind(self) -> IncrementKind | None:
        """Effective bump policy: patch unless an explicit version was given."""
        if self.explicit_version is not None:
            return None
        return self.increment or IncrementKind.PATCH


class PreconditionWarning(BaseModel):
    """A non-fatal validation finding; the operator may override it.

    The default answer at its gate is "do not proceed".
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    code: str = Field(..., description="Machine-readable warning kind")
    message: str = Field(..., description="Human-readable warning")
    details: list[str] = Field(default_factory=list, description="Supporting lines")


class DeploymentPlan(BaseModel):
    """A fully resolved deployment, before anything is created or pushed."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    intent: DeploymentIntent
    service: str = Field(..., description="Service being deployed")
    previous: Version = Field(..., description="Latest version on the track before this deploy")
    tag: Tag = Field(..., description="Tag that will be created or re-pointed")
    commit: str = Field(..., description="Commit the tag will point at")
    branch: str | None = Field(default=None, description="Current branch")
    message: str = Field(..., description="Effective tag annotation")
    collision: bool = Field(default=False, description="Tag already exists")
    rebuild: bool = Field(default=False, description="Re-point the existing tag at the commit")
    warnings: list[PreconditionWarning] = Field(default_factory=list)

    @property
    def environment(self) -> Environment:
        return self.tag.environment

    @property
    def version(self) -> Version:
        return self.tag.version


class DeploymentStatus(str, Enum):
    PREVIEW = "preview"
    DEPLOYED = "deployed"


class DeploymentResult(BaseModel):
    """Outcome of one deploy invocation."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    status: DeploymentStatus
    plan: DeploymentPlan
    rebuilt: bool = Field(default=False, description="An existing tag was re-pointed")
    monitor: MonitorResult | None = Field(default=None, description="CI monitoring result")
    manual_url: str | None = Field(default=None, description="Where to follow the run by hand")
    external_sync_hint: bool = Field(
        default=False,
        description="Deployment target syncs asynchronously after CI (e.g. Argo CD)",
    )

    @property
    def tag_name(self) -> str:
        return self.plan.tag.name


class CollisionResolution(str, Enum):
    """Operator choices when a rendered tag already exists."""

    REBUILD = "rebuild"
    DIFFERENT_VERSION = "different_version"
    CANCEL = "cancel"


class TagDetails(BaseModel):
    """A tag annotated with provenance from git and its last CI conclusion."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    tag: Tag
    commit: str = Field(default="", description="Commit the tag points at")
    author: str = Field(default="", description="Author of the tagged commit")
    created_at: datetime | None = Field(default=None, description="Commit date")
    message: str = Field(default="", description="Tag annotation subject")
    run_status: RunConclusion = Field(default=RunConclusion.UNKNOWN)

    @property
    def name(self) -> str:
        return self.tag.name

    @property
    def short_commit(self) -> str:
        return self.commit[:8]


class RollbackPlan(BaseModel):
    """A synthesized rollback: a fresh tag pointing at an older commit.

    Created at rollback time, pushed once, never mutated.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    environment: Environment
    service: str
    current: Tag = Field(..., description="Currently deployed tag (rolling back from)")
    target: Tag = Field(..., description="Historical tag (rolling back to)")
    rollback_tag: Tag = Field(..., description="New tag that triggers the rollback deploy")
    commit: str = Field(..., description="Commit of the target tag")
    message: str = Field(..., description="Annotation recording who and from/to what")
    operator: str = Field(..., description="Who initiated the rollback")
    changes: list[str] = Field(
        default_factory=list,
        description="Commits between target and current that will be reverted",
    )


__all__: list[str] = [
    "CollisionResolution",
    "DeploymentIntent",
    "DeploymentPlan",
    "DeploymentResult",
    "DeploymentStatus",
    "IncrementKind",
    "PreconditionWarning",
    "RollbackPlan",
    "TagDetails",
]
