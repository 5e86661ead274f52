"""Repository abstraction over git tags.

The orchestrator and rollback selector only talk to a ``TagRepository``. The
production implementation shells out to git; ``deploytag.testing`` provides an
in-memory implementation with the same behavior for tests.

Example:
    >>> from deploytag.repository import GitRepository
    >>> repo = GitRepository(remote="origin")
    >>> repo.fetch_tags()
    >>> [t for t in repo.list_tags() if t.endswith("-staging")]
    ['v1.0.0-staging', 'v1.1.0-staging']
"""

from __future__ import annotations

import getpass
import os
import re
import subprocess
from datetime import datetime
from pathlib import Path
from typing import Protocol, runtime_checkable

import structlog

from deploytag.errors import GitError, PushError
from deploytag.schemas.deployment import TagDetails
from deploytag.tags import Tag

logger = structlog.get_logger(__name__)

# Tag names, commit SHAs, remotes and ranges such as v1.0.0..v1.1.0
_SAFE_GIT_REF_PATTERN = re.compile(r"^[a-zA-Z0-9._/~^:\-]+$")

_FIELD_SEPARATOR = "\x1f"


@runtime_checkable
class TagRepository(Protocol):
    """Operations the deployment engine needs from a repository.

    Implementations must raise ``PushError`` when the remote rejects a push
    and ``GitError`` for any other failed repository operation.
    """

    def fetch_tags(self) -> None: ...

    def list_tags(self) -> list[str]: ...

    def tag_exists(self, name: str) -> bool: ...

    def revision_of(self, ref: str) -> str: ...

    def head_commit(self) -> str: ...

    def current_branch(self) -> str | None: ...

    def uncommitted_changes(self) -> list[str]: ...

    def create_tag(self, name: str, commit: str, message: str, *, force: bool = False) -> None: ...

    def delete_tag(self, name: str) -> None: ...

    def push_tag(self, name: str, *, force: bool = False) -> None: ...

    def delete_remote_tag(self, name: str) -> None: ...

    def tag_details(self, tag: Tag) -> TagDetails: ...

    def commit_range(self, newer: str, older: str, limit: int = 5) -> list[str]: ...

    def user_name(self) -> str: ...

    def remote_url(self) -> str | None: ...


def _validate_git_ref(ref: str) -> None:
    """Reject references that are empty or contain characters git refs never need.

    Raises:
        GitError: If the reference is empty or contains invalid characters.
    """
    if not ref:
        raise GitError("Git reference cannot be empty")
    if not _SAFE_GIT_REF_PATTERN.match(ref):
        raise GitError(
            f"Invalid git reference: {ref!r}. "
            "Only alphanumeric characters, dots, slashes, tildes, "
            "carets, hyphens, underscores, and colons are allowed."
        )


class GitRepository:
    """``TagRepository`` backed by the git command line.

    Args:
        path: Working tree to operate on (default: current directory).
        remote: Remote that tags are fetched from and pushed to.
    """

    def __init__(self, path: Path | str | None = None, remote: str = "origin") -> None:
        _validate_git_ref(remote)
        self.path = Path(path) if path is not None else None
        self.remote = remote
        self._log = logger.bind(remote=remote)

    def _run(self, *args: str, check: bool = True) -> subprocess.CompletedProcess[str]:
        try:
            return subprocess.run(
                ["git", *args],
                capture_output=True,
                text=True,
                check=check,
                cwd=self.path,
            )
        except subprocess.CalledProcessError as e:
            stderr = (e.stderr or "").strip()
            msg = f"git {args[0]} failed: {stderr or f'exit status {e.returncode}'}"
            raise GitError(msg) from e
        except FileNotFoundError as e:
            msg = "git command not found"
            raise GitError(msg) from e

    def fetch_tags(self) -> None:
        """Fetch remote tags so version resolution sees what others pushed."""
        self._run("fetch", "--tags", "--quiet", self.remote)
        self._log.debug("tags_fetched")

    def list_tags(self) -> list[str]:
        result = self._run("tag", "--list")
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def tag_exists(self, name: str) -> bool:
        _validate_git_ref(name)
        result = self._run("rev-parse", "--quiet", "--verify", f"refs/tags/{name}", check=False)
        return result.returncode == 0

    def revision_of(self, ref: str) -> str:
        """Resolve a tag or other ref to the commit it points at."""
        _validate_git_ref(ref)
        return self._run("rev-list", "-n", "1", ref).stdout.strip()

    def head_commit(self) -> str:
        return self._run("rev-parse", "HEAD").stdout.strip()

    def current_branch(self) -> str | None:
        """Return the checked-out branch, or None on a detached HEAD."""
        branch = self._run("rev-parse", "--abbrev-ref", "HEAD").stdout.strip()
        return None if branch in ("", "HEAD") else branch

    def uncommitted_changes(self) -> list[str]:
        """Return ``git status --porcelain`` lines for modified or untracked files."""
        result = self._run("status", "--porcelain")
        return [line for line in result.stdout.splitlines() if line.strip()]

    def create_tag(self, name: str, commit: str, message: str, *, force: bool = False) -> None:
        """Create an annotated tag at ``commit``."""
        _validate_git_ref(name)
        _validate_git_ref(commit)
        args = ["tag", "-a"]
        if force:
            args.append("-f")
        args.extend([name, commit, "-m", message])
        self._run(*args)
        self._log.info("tag_created", tag=name, commit=commit[:12], force=force)

    def delete_tag(self, name: str) -> None:
        _validate_git_ref(name)
        self._run("tag", "-d", name)
        self._log.info("tag_deleted", tag=name)

    def push_tag(self, name: str, *, force: bool = False) -> None:
        """Push one tag to the remote.

        Raises:
            PushError: If the remote rejects the push. git's stderr is kept verbatim.
        """
        _validate_git_ref(name)
        args = ["push"]
        if force:
            args.append("--force")
        args.extend([self.remote, f"refs/tags/{name}"])
        result = self._run(*args, check=False)
        if result.returncode != 0:
            detail = (result.stderr or result.stdout).strip()
            self._log.warning("tag_push_rejected", tag=name, detail=detail)
            raise PushError(name, detail or f"exit status {result.returncode}")
        self._log.info("tag_pushed", tag=name, force=force)

    def delete_remote_tag(self, name: str) -> None:
        """Delete a tag on the remote. A ref that is already gone is not an error."""
        _validate_git_ref(name)
        result = self._run("push", self.remote, f":refs/tags/{name}", check=False)
        if result.returncode == 0:
            self._log.info("remote_tag_deleted", tag=name)
            return
        detail = (result.stderr or result.stdout).strip()
        if "remote ref does not exist" in detail:
            self._log.debug("remote_tag_absent", tag=name)
            return
        raise PushError(name, detail or f"exit status {result.returncode}")

    def tag_details(self, tag: Tag) -> TagDetails:
        """Read commit, author, date and annotation subject of a tag."""
        name = tag.name
        _validate_git_ref(name)
        log = self._run(
            "log", "-1", f"--format=%H{_FIELD_SEPARATOR}%an{_FIELD_SEPARATOR}%cI", name
        ).stdout.strip()
        commit, author, date = (log.split(_FIELD_SEPARATOR) + ["", "", ""])[:3]
        subject = self._run("tag", "--list", "--format=%(contents:subject)", name).stdout.strip()

        created_at: datetime | None = None
        if date:
            try:
                created_at = datetime.fromisoformat(date)
            except ValueError:
                self._log.debug("tag_date_unparseable", tag=name, date=date)

        return TagDetails(
            tag=tag,
            commit=commit,
            author=author,
            created_at=created_at,
            message=subject,
        )

    def commit_range(self, newer: str, older: str, limit: int = 5) -> list[str]:
        """Return one-line summaries of commits in ``older..newer``, newest first."""
        _validate_git_ref(newer)
        _validate_git_ref(older)
        result = self._run("log", "--oneline", f"--max-count={limit}", f"{older}..{newer}")
        return [line for line in result.stdout.splitlines() if line.strip()]

    def user_name(self) -> str:
        """Return git's ``user.name``, falling back to the login name."""
        result = self._run("config", "user.name", check=False)
        name = result.stdout.strip()
        if name:
            return name
        return os.environ.get("USER") or getpass.getuser()

    def remote_url(self) -> str | None:
        result = self._run("remote", "get-url", self.remote, check=False)
        url = result.stdout.strip()
        return url or None


__all__: list[str] = [
    "GitRepository",
    "TagRepository",
]
