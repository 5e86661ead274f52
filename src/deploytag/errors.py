"""Exception hierarchy for deploytag.

All exceptions inherit from DeployError, the base exception class. Each class
carries the CLI exit code used when it escapes a command.

Exception Hierarchy:
    DeployError (base)
    ├── VersionValidationError        # Malformed explicit version or tag
    │   ├── InvalidIncrementKindError # Increment kind not major|minor|patch
    │   ├── TagParseError             # String is not a recognized tag
    │   └── HotfixDisabledError       # Hotfix mode disabled by configuration
    ├── CollisionError                # Tag already exists, left unresolved
    ├── PushError                     # Remote rejected the tag push
    ├── RollbackTargetError           # Rollback refused before any tag is created
    │   ├── TargetNotFoundError       # Target tag missing or not in environment
    │   └── StagingNotSupportedError  # Service has no staging track
    ├── DeploymentFailedError         # CI run finished unsuccessfully
    ├── DeploymentCancelledError      # Operator declined a confirmation gate
    ├── GitError                      # git command failed
    └── RunQueryError                 # CI run query failed

Exit Codes:
    0 - Success (also: cancellation deferred to a later run)
    1 - General error, cancelled at a gate
    3 - Validation error
    4 - Tag collision
    5 - Push rejected
    6 - Rollback target error
    7 - Deployment run failed
    8 - git or CI query error

Example:
    >>> from deploytag.errors import PushError
    >>> raise PushError("v1.2.0", "! [rejected] v1.2.0 -> v1.2.0 (already exists)")
    Traceback (most recent call last):
        ...
    PushError: Push of v1.2.0 rejected: ! [rejected] v1.2.0 -> v1.2.0 (already exists)
"""

from __future__ import annotations


class DeployError(Exception):
    """Base exception for all deploytag errors.

    Attributes:
        exit_code: CLI exit code for this error type (default: 1).
    """

    exit_code: int = 1


class VersionValidationError(DeployError):
    """Raised when a version or tag string is malformed.

    No mutation is attempted once this is raised.

    Attributes:
        value: The rejected input.
        reason: Why the input was rejected.
    """

    exit_code: int = 3

    def __init__(self, value: str, reason: str, *, message: str | None = None) -> None:
        self.value = value
        self.reason = reason
        super().__init__(message or f"Invalid version {value!r}: {reason}")


class InvalidIncrementKindError(VersionValidationError):
    """Raised when an increment kind is not one of major, minor or patch."""

    def __init__(self, kind: str) -> None:
        super().__init__(kind, "increment kind must be one of major, minor, patch")
        self.kind = kind


class TagParseError(VersionValidationError):
    """Raised when a string does not match exactly one tag pattern.

    Example:
        >>> raise TagParseError("v1.2", "v")
        Traceback (most recent call last):
            ...
        TagParseError: Not a deployment tag: 'v1.2' (expected v<M>.<N>.<P>[-dev|-staging]...)
    """

    def __init__(self, tag: str, prefix: str = "v") -> None:
        self.tag = tag
        self.prefix = prefix
        super().__init__(
            tag,
            "not a deployment tag",
            message=(
                f"Not a deployment tag: {tag!r} "
                f"(expected {prefix}<M>.<N>.<P>[-dev|-staging][-rollback-<epoch>])"
            ),
        )


class HotfixDisabledError(VersionValidationError):
    """Raised when a hotfix deployment is requested but disabled."""

    def __init__(self, service: str) -> None:
        super().__init__("hotfix", f"hotfix deployments are disabled for {service}")
        self.service = service


class CollisionError(DeployError):
    """Raised when the rendered tag already exists and no resolution was chosen.

    Attributes:
        tag: The colliding tag name.
    """

    exit_code: int = 4

    def __init__(self, tag: str) -> None:
        self.tag = tag
        super().__init__(
            f"Tag {tag} already exists. Re-run with --rebuild to re-point it "
            "or --version to choose a different version."
        )


class PushError(DeployError):
    """Raised when the remote rejects a tag push.

    The remote's message is kept verbatim; the push is never retried.

    Attributes:
        tag: Tag that failed to publish.
        detail: git's stderr output.
    """

    exit_code: int = 5

    def __init__(self, tag: str, detail: str) -> None:
        self.tag = tag
        self.detail = detail
        super().__init__(f"Push of {tag} rejected: {detail}")


class RollbackTargetError(DeployError):
    """Raised when a rollback cannot be prepared. Nothing has been created."""

    exit_code: int = 6


class TargetNotFoundError(RollbackTargetError):
    """Raised when the chosen rollback target is not a valid tag of the environment.

    Attributes:
        target: The requested target tag.
        environment: The rollback environment.
        available: Tags that would have been valid, newest first.
    """

    def __init__(
        self,
        target: str,
        environment: str,
        reason: str = "does not exist",
        available: list[str] | None = None,
    ) -> None:
        self.target = target
        self.environment = environment
        self.reason = reason
        self.available = available or []

        msg = f"Rollback target {target} {reason} for {environment}"
        if self.available:
            preview = ", ".join(self.available[:5])
            if len(self.available) > 5:
                preview += f" (and {len(self.available) - 5} more)"
            msg += f". Available: {preview}"
        super().__init__(msg)


class StagingNotSupportedError(RollbackTargetError):
    """Raised when a staging rollback is requested for a service without staging."""

    def __init__(self, service: str, supported: list[str] | None = None) -> None:
        self.service = service
        self.supported = supported or []

        msg = f"Service {service} does not support the staging environment"
        if self.supported:
            msg += f". Staging is only available for: {', '.join(self.supported)}"
        super().__init__(msg)


class DeploymentFailedError(DeployError):
    """Raised when the CI run for a pushed tag concludes unsuccessfully.

    Attributes:
        tag: The deployed tag.
        conclusion: Conclusion reported by the CI system.
        url: Link to the run logs, if known.
    """

    exit_code: int = 7

    def __init__(self, tag: str, conclusion: str, url: str | None = None) -> None:
        self.tag = tag
        self.conclusion = conclusion
        self.url = url

        msg = f"Deployment of {tag} failed with status: {conclusion}"
        if url:
            msg += f" (logs: {url})"
        super().__init__(msg)


class DeploymentCancelledError(DeployError):
    """Raised when the operator declines a gate. No mutation has happened.

    Attributes:
        reason: What was declined.
        exit_code: 1 when cancelled at a gate, 0 when the operator chose to
            come back later with a different version.
    """

    def __init__(self, reason: str = "Deployment cancelled", *, exit_code: int = 1) -> None:
        self.reason = reason
        self.exit_code = exit_code
        super().__init__(reason)


class GitError(DeployError):
    """Raised when a git command fails for a reason other than a push rejection."""

    exit_code: int = 8


class RunQueryError(DeployError):
    """Raised when the CI system cannot be queried for runs."""

    exit_code: int = 8


__all__: list[str] = [
    "CollisionError",
    "DeployError",
    "DeploymentCancelledError",
    "DeploymentFailedError",
    "GitError",
    "HotfixDisabledError",
    "InvalidIncrementKindError",
    "PushError",
    "RollbackTargetError",
    "RunQueryError",
    "StagingNotSupportedError",
    "TagParseError",
    "TargetNotFoundError",
    "VersionValidationError",
]
