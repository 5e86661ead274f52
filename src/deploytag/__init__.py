"""deploytag - tag-driven deployment and rollback engine.

A deployment is a git tag. Pushing ``v1.4.0-staging`` triggers the CI
pipeline that builds and deploys version 1.4.0 to staging; pushing
``v1.3.0-rollback-1724850000`` re-deploys an earlier production commit.

Components:
    deploytag.tags: Tag grammar (render and parse tag names)
    deploytag.versioning: Per-environment version resolution
    deploytag.deployment: Deployment orchestrator
    deploytag.rollback: Rollback selector
    deploytag.monitor: CI run monitor
"""

from __future__ import annotations

from deploytag.deployment import DeploymentOrchestrator
from deploytag.errors import DeployError
from deploytag.monitor import MonitorConfig, RunMonitor
from deploytag.rollback import RollbackSelector, StaticStagingCatalog
from deploytag.schemas import DeploymentIntent, IncrementKind
from deploytag.tags import Environment, Tag, Version, parse, render

__version__ = "0.1.0"

__all__: list[str] = [
    "DeployError",
    "DeploymentIntent",
    "DeploymentOrchestrator",
    "Environment",
    "IncrementKind",
    "MonitorConfig",
    "RollbackSelector",
    "RunMonitor",
    "StaticStagingCatalog",
    "Tag",
    "Version",
    "__version__",
    "parse",
    "render",
]
