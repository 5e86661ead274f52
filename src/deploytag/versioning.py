"""Version resolution over per-environment version tracks.

Development, staging and production each advance independently: a version is
only ever compared with versions of the same environment, so a development
build can never overtake production.

Example:
    >>> from deploytag.tags import Environment
    >>> latest(Environment.PRODUCTION, ["v1.0.0", "v1.1.0", "v1.1.0-dev"])
    Version(major=1, minor=1, patch=0)
    >>> str(increment(Version(1, 2, 3), "minor"))
    '1.3.0'
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from enum import Enum

import structlog

from deploytag.errors import InvalidIncrementKindError, VersionValidationError
from deploytag.schemas.deployment import DeploymentIntent, IncrementKind
from deploytag.tags import DEFAULT_PREFIX, ZERO_VERSION, Environment, Tag, Version, try_parse

logger = structlog.get_logger(__name__)

_EXPLICIT_VERSION_RE = re.compile(r"^(\d+)\.(\d+)\.(\d+)$")


class VersionTrack:
    """Ordered deployment tags of one environment, sorted by version.

    Rollback markers and tags of other environments are excluded. Ordering is
    by version, never by creation time.

    Example:
        >>> names = ["v2.0.0-staging", "v1.9.0-staging", "v3.0.0"]
        >>> [t.name for t in VersionTrack.from_tags(Environment.STAGING, names)]
        ['v1.9.0-staging', 'v2.0.0-staging']
    """

    def __init__(self, environment: Environment, tags: Iterable[Tag]) -> None:
        self.environment = environment
        self._tags = sorted(
            (t for t in tags if t.environment is environment and not t.is_rollback),
            key=lambda t: t.version,
        )

    @classmethod
    def from_tags(
        cls,
        environment: Environment,
        tags: Iterable[str | Tag],
        prefix: str = DEFAULT_PREFIX,
    ) -> VersionTrack:
        """Build a track from raw tag names, ignoring names outside the grammar."""
        parsed: list[Tag] = []
        for tag in tags:
            if isinstance(tag, Tag):
                parsed.append(tag)
                continue
            candidate = try_parse(tag, prefix)
            if candidate is not None:
                parsed.append(candidate)
        return cls(environment, parsed)

    @property
    def latest(self) -> Version:
        """Maximum version on the track, or 0.0.0 for a brand-new service."""
        if not self._tags:
            return ZERO_VERSION
        return self._tags[-1].version

    @property
    def latest_tag(self) -> Tag | None:
        return self._tags[-1] if self._tags else None

    def descending(self) -> list[Tag]:
        return list(reversed(self._tags))

    def contains(self, version: Version) -> bool:
        return any(t.version == version for t in self._tags)

    def __iter__(self) -> Iterator[Tag]:
        return iter(self._tags)

    def __len__(self) -> int:
        return len(self._tags)


class ResolutionMode(str, Enum):
    INCREMENT = "increment"
    EXPLICIT = "explicit"
    REBUILD = "rebuild"


@dataclass(frozen=True)
class VersionResolution:
    """Resolved version with the track state it was derived from."""

    version: Version
    previous: Version
    mode: ResolutionMode
    kind: IncrementKind | None = None


def latest(
    environment: Environment,
    tags: Iterable[str | Tag],
    prefix: str = DEFAULT_PREFIX,
) -> Version:
    """Return the highest version deployed to ``environment``.

    Args:
        environment: Track to inspect.
        tags: Tag names (or parsed tags); names outside the grammar are ignored.
        prefix: Version prefix.

    Returns:
        The maximum version, or 0.0.0 if the environment has no tags.
    """
    return VersionTrack.from_tags(environment, tags, prefix).latest


def increment(version: Version, kind: IncrementKind | str) -> Version:
    """Bump one field of ``version`` and zero the lower-order fields.

    Raises:
        InvalidIncrementKindError: If ``kind`` is not major, minor or patch.
    """
    try:
        bump = IncrementKind(kind.lower() if isinstance(kind, str) else kind)
    except ValueError:
        raise InvalidIncrementKindError(str(kind)) from None

    major, minor, patch = version
    if bump is IncrementKind.MAJOR:
        return Version(major + 1, 0, 0)
    if bump is IncrementKind.MINOR:
        return Version(major, minor + 1, 0)
    return Version(major, minor, patch + 1)


def resolve_explicit(value: str) -> Version:
    """Validate a caller-supplied ``X.Y.Z`` version.

    Raises:
        VersionValidationError: If the string is not three dot-separated integers.
    """
    match = _EXPLICIT_VERSION_RE.match(value.strip()) if value else None
    if match is None:
        raise VersionValidationError(value, "must be in X.Y.Z format (e.g. 2.1.0)")
    major, minor, patch = (int(part) for part in match.groups())
    return Version(major, minor, patch)


def resolve_version(
    intent: DeploymentIntent,
    tags: Iterable[str | Tag],
    prefix: str = DEFAULT_PREFIX,
) -> VersionResolution:
    """Compute the version a deployment intent should produce.

    Rebuild reuses the latest version verbatim; an explicit version is taken
    as given (an override may go backwards, which is logged); otherwise the
    latest version is incremented.

    Raises:
        VersionValidationError: On a malformed explicit version, or a rebuild
            of an environment that has never been deployed.
    """
    track = VersionTrack.from_tags(intent.environment, tags, prefix)
    previous = track.latest

    if intent.rebuild:
        if track.latest_tag is None:
            raise VersionValidationError(
                str(previous),
                f"nothing to rebuild, {intent.environment} has no deployment tags yet",
            )
        return VersionResolution(
            version=previous, previous=previous, mode=ResolutionMode.REBUILD
        )

    if intent.explicit_version is not None:
        version = resolve_explicit(intent.explicit_version)
        if version <= previous:
            logger.warning(
                "explicit_version_not_newer",
                environment=intent.environment.value,
                version=str(version),
                latest=str(previous),
            )
        return VersionResolution(
            version=version, previous=previous, mode=ResolutionMode.EXPLICIT
        )

    kind = intent.increment_kind or IncrementKind.PATCH
    return VersionResolution(
        version=increment(previous, kind),
        previous=previous,
        mode=ResolutionMode.INCREMENT,
        kind=kind,
    )


__all__: list[str] = [
    "ResolutionMode",
    "VersionResolution",
    "VersionTrack",
    "increment",
    "latest",
    "resolve_explicit",
    "resolve_version",
]
