"""In-memory fakes for testing code built on deploytag.

These implement the same interfaces as the production collaborators so the
orchestrator, rollback selector and monitor can be exercised without git, a
network or a terminal:

- ``InMemoryTagRepository``: a ``TagRepository`` with a linear commit history,
  local and remote tag sets and scriptable push rejections.
- ``FakeRunProvider``: a ``RunProvider`` whose runs appear after a delay and
  advance through scripted states.
- ``ScriptedOperator``: an ``Operator`` that answers gates from queues.
- ``FakeClock``: a clock/sleep pair that advances only when slept on.

Example:
    >>> repo = InMemoryTagRepository()
    >>> repo.commit("a1b2c3d4", "Initial commit")
    >>> repo.seed_tag("v1.0.0")
    >>> repo.list_tags()
    ['v1.0.0']
"""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone

from deploytag.errors import GitError, PushError, RunQueryError
from deploytag.schemas.deployment import (
    CollisionResolution,
    DeploymentPlan,
    PreconditionWarning,
    TagDetails,
)
from deploytag.schemas.runs import WorkflowRun
from deploytag.tags import Tag, Version


@dataclass
class FakeCommit:
    sha: str
    subject: str
    author: str = "Dev Eloper"
    date: datetime = field(
        default_factory=lambda: datetime(2024, 8, 28, 12, 0, tzinfo=timezone.utc)
    )


@dataclass
class FakeTag:
    commit: str
    message: str


class InMemoryTagRepository:
    """``TagRepository`` held in memory.

    Attributes:
        history: Commits, oldest first. The last one is HEAD.
        tags: Local tags by name.
        remote: Remote tags by name, mapped to their commit.
        rejected_pushes: Tag names the remote refuses, mapped to the rejection message.
        operations: Every mutating call, in order, for assertions.
    """

    def __init__(
        self,
        *,
        branch: str | None = "main",
        user: str = "Dev Eloper",
        remote_url: str | None = "git@github.com:acme/payments.git",
    ) -> None:
        self.history: list[FakeCommit] = []
        self.tags: dict[str, FakeTag] = {}
        self.remote: dict[str, str] = {}
        self.rejected_pushes: dict[str, str] = {}
        self.operations: list[tuple[str, ...]] = []
        self.branch = branch
        self.user = user
        self.url = remote_url
        self.changes: list[str] = []
        self.fetch_error: str | None = None

    # -- test setup --------------------------------------------------------

    def commit(self, sha: str, subject: str = "Change", author: str = "Dev Eloper") -> FakeCommit:
        """Append a commit and move HEAD to it."""
        record = FakeCommit(sha=sha, subject=subject, author=author)
        self.history.append(record)
        return record

    def seed_tag(
        self,
        name: str,
        commit: str | None = None,
        message: str = "",
        *,
        remote: bool = True,
    ) -> None:
        """Create a tag without recording an operation (local and, by default, remote)."""
        target = commit or self.head_commit()
        self.tags[name] = FakeTag(commit=target, message=message or f"Release {name}")
        if remote:
            self.remote[name] = target

    # -- TagRepository ------------------------------------------------------

    def fetch_tags(self) -> None:
        if self.fetch_error:
            raise GitError(self.fetch_error)
        for name, commit in self.remote.items():
            self.tags.setdefault(name, FakeTag(commit=commit, message=f"Release {name}"))

    def list_tags(self) -> list[str]:
        return sorted(self.tags)

    def tag_exists(self, name: str) -> bool:
        return name in self.tags

    def revision_of(self, ref: str) -> str:
        if ref in self.tags:
            return self.tags[ref].commit
        for record in self.history:
            if record.sha.startswith(ref):
                return record.sha
        raise GitError(f"git rev-list failed: unknown revision {ref}")

    def head_commit(self) -> str:
        if not self.history:
            raise GitError("git rev-parse failed: no commits yet")
        return self.history[-1].sha

    def current_branch(self) -> str | None:
        return self.branch

    def uncommitted_changes(self) -> list[str]:
        return list(self.changes)

    def create_tag(self, name: str, commit: str, message: str, *, force: bool = False) -> None:
        if name in self.tags and not force:
            raise GitError(f"git tag failed: tag '{name}' already exists")
        self.tags[name] = FakeTag(commit=commit, message=message)
        self.operations.append(("create_tag", name, commit, "force" if force else ""))

    def delete_tag(self, name: str) -> None:
        if name not in self.tags:
            raise GitError(f"git tag failed: tag '{name}' not found.")
        del self.tags[name]
        self.operations.append(("delete_tag", name))

    def push_tag(self, name: str, *, force: bool = False) -> None:
        if name in self.rejected_pushes:
            raise PushError(name, self.rejected_pushes[name])
        local = self.tags[name].commit
        if name in self.remote and self.remote[name] != local and not force:
            raise PushError(name, f"! [rejected]        {name} -> {name} (already exists)")
        self.remote[name] = local
        self.operations.append(("push_tag", name, "force" if force else ""))

    def delete_remote_tag(self, name: str) -> None:
        self.remote.pop(name, None)
        self.operations.append(("delete_remote_tag", name))

    def tag_details(self, tag: Tag) -> TagDetails:
        record = self.tags[tag.name]
        commit = self._commit(record.commit)
        return TagDetails(
            tag=tag,
            commit=record.commit,
            author=commit.author if commit else "",
            created_at=commit.date if commit else None,
            message=record.message,
        )

    def commit_range(self, newer: str, older: str, limit: int = 5) -> list[str]:
        shas = [c.sha for c in self.history]
        newer_index = shas.index(self.revision_of(newer))
        older_index = shas.index(self.revision_of(older))
        between = self.history[older_index + 1 : newer_index + 1]
        return [f"{c.sha[:7]} {c.subject}" for c in reversed(between)][:limit]

    def user_name(self) -> str:
        return self.user

    def remote_url(self) -> str | None:
        return self.url

    def _commit(self, sha: str) -> FakeCommit | None:
        return next((c for c in self.history if c.sha == sha), None)


class FakeRunProvider:
    """``RunProvider`` with scripted run visibility and progress.

    Args:
        runs: Runs visible from the start, newest first.
        visible_after: Number of ``list_recent_runs`` calls that return nothing.
        actions_url: Manual monitoring URL.
    """

    def __init__(
        self,
        runs: Iterable[WorkflowRun] = (),
        *,
        visible_after: int = 0,
        actions_url: str | None = "https://github.com/acme/payments/actions",
    ) -> None:
        self.runs: list[WorkflowRun] = list(runs)
        self.visible_after = visible_after
        self._actions_url = actions_url
        self._progress: dict[int, deque[WorkflowRun | Exception]] = {}
        self.list_errors = 0
        self.list_calls = 0
        self.get_calls = 0

    @property
    def actions_url(self) -> str | None:
        return self._actions_url

    def add_run(self, run: WorkflowRun, *updates: WorkflowRun | Exception) -> None:
        """Publish ``run`` as the newest run; ``get_run`` then walks through ``updates``."""
        self.runs.insert(0, run)
        self._progress[run.run_id] = deque(updates)

    def list_recent_runs(self, limit: int = 5) -> list[WorkflowRun]:
        self.list_calls += 1
        if self.list_errors:
            self.list_errors -= 1
            raise RunQueryError("GitHub API request failed: connection reset")
        if self.list_calls <= self.visible_after:
            return []
        return self.runs[:limit]

    def get_run(self, run_id: int) -> WorkflowRun:
        self.get_calls += 1
        queue = self._progress.get(run_id)
        if queue:
            update = queue.popleft() if len(queue) > 1 else queue[0]
            if isinstance(update, Exception):
                raise update
            self.runs = [update if r.run_id == run_id else r for r in self.runs]
            return update
        for run in self.runs:
            if run.run_id == run_id:
                return run
        raise RunQueryError(f"run {run_id} not found")


class ScriptedOperator:
    """``Operator`` that answers from queues and records every prompt.

    Unscripted gates are declined, matching the "default no" of every gate.
    """

    def __init__(
        self,
        *,
        confirms: Iterable[bool] = (),
        typed: Iterable[str] = (),
        overrides: Iterable[bool] = (),
        collisions: Iterable[CollisionResolution] = (),
        versions: Iterable[str | None] = (),
    ) -> None:
        self.confirms = deque(confirms)
        self.typed = deque(typed)
        self.overrides = deque(overrides)
        self.collisions = deque(collisions)
        self.versions = deque(versions)
        self.prompts: list[str] = []
        self.plans: list[DeploymentPlan] = []

    def confirm(self, prompt: str, default: bool = False) -> bool:
        self.prompts.append(prompt)
        return self.confirms.popleft() if self.confirms else False

    def confirm_typed(self, prompt: str, expected: str) -> bool:
        self.prompts.append(prompt)
        return bool(self.typed) and self.typed.popleft() == expected

    def override_warning(self, warning: PreconditionWarning) -> bool:
        self.prompts.append(warning.message)
        return self.overrides.popleft() if self.overrides else False

    def resolve_collision(self, tag: str) -> CollisionResolution:
        self.prompts.append(f"collision {tag}")
        return self.collisions.popleft() if self.collisions else CollisionResolution.CANCEL

    def request_version(self, current: Version) -> str | None:
        self.prompts.append(f"version after {current}")
        return self.versions.popleft() if self.versions else None

    def show_plan(self, plan: DeploymentPlan) -> None:
        self.plans.append(plan)


class FakeClock:
    """Monotonic clock that only advances when ``sleep`` is called."""

    def __init__(self, start: float = 1_724_850_000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


__all__: list[str] = [
    "FakeClock",
    "FakeCommit",
    "FakeRunProvider",
    "FakeTag",
    "InMemoryTagRepository",
    "ScriptedOperator",
]
