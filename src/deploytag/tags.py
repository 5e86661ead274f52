"""Tag grammar: encode and decode deployment tag names.

A deployment tag name is a bijection of (environment, version, qualifier):

    production   v{M}.{N}.{P}                  v2.1.0
    staging      v{M}.{N}.{P}-staging          v2.1.0-staging
    development  v{M}.{N}.{P}-dev              v2.1.0-dev
    rollback     <base-tag>-rollback-{epoch}   v2.1.0-rollback-1724850000

The leading ``v`` is the configurable version prefix. Numeric segments never
carry leading zeros, so ``render(parse(s)) == s`` for every valid ``s``.

Everything in this module is pure: no git, no I/O.

Example:
    >>> from deploytag.tags import Environment, Version, parse, render
    >>> render(Environment.STAGING, Version(2, 1, 0))
    'v2.1.0-staging'
    >>> parse("v2.1.0-dev-rollback-1724850000").rollback_timestamp
    1724850000
"""

from __future__ import annotations

import re
from enum import Enum
from functools import lru_cache
from typing import NamedTuple

from pydantic import BaseModel, ConfigDict, Field

from deploytag.errors import TagParseError

DEFAULT_PREFIX = "v"

_SEGMENT = r"(0|[1-9]\d*)"


class Environment(str, Enum):
    """Independent deployment targets, each with its own version track.

    Examples:
        >>> Environment.from_token("prod")
        <Environment.PRODUCTION: 'production'>
        >>> Environment.DEVELOPMENT.suffix
        '-dev'
    """

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"

    @property
    def suffix(self) -> str:
        """Tag suffix that marks this environment's track."""
        return _SUFFIXES[self]

    @property
    def short_name(self) -> str:
        return _SHORT_NAMES[self]

    @classmethod
    def from_token(cls, token: str) -> Environment:
        """Normalize a CLI token (dev, development, prod, ...) to an Environment.

        Raises:
            ValueError: If the token names no known environment.
        """
        try:
            return ENVIRONMENT_ALIASES[token.strip().lower()]
        except KeyError:
            known = ", ".join(sorted(ENVIRONMENT_ALIASES))
            msg = f"Unknown environment {token!r}. Expected one of: {known}"
            raise ValueError(msg) from None

    def __str__(self) -> str:
        return self.value


_SUFFIXES = {
    Environment.DEVELOPMENT: "-dev",
    Environment.STAGING: "-staging",
    Environment.PRODUCTION: "",
}

_SHORT_NAMES = {
    Environment.DEVELOPMENT: "dev",
    Environment.STAGING: "staging",
    Environment.PRODUCTION: "prod",
}

ENVIRONMENT_ALIASES: dict[str, Environment] = {
    "dev": Environment.DEVELOPMENT,
    "development": Environment.DEVELOPMENT,
    "staging": Environment.STAGING,
    "prod": Environment.PRODUCTION,
    "production": Environment.PRODUCTION,
}


class Version(NamedTuple):
    """Semantic version triple. Tuple ordering is version ordering."""

    major: int
    minor: int
    patch: int

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"


ZERO_VERSION = Version(0, 0, 0)


class Tag(BaseModel):
    """A parsed deployment tag.

    Attributes:
        environment: Track the tag belongs to.
        version: Version triple.
        rollback_timestamp: Unix seconds for rollback markers, else None.
        prefix: Version prefix the tag was rendered with.

    Examples:
        >>> tag = Tag(environment=Environment.PRODUCTION, version=Version(2, 5, 0))
        >>> tag.name
        'v2.5.0'
        >>> tag.with_rollback(1724850000).name
        'v2.5.0-rollback-1724850000'
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    environment: Environment = Field(..., description="Deployment environment")
    version: Version = Field(..., description="Version triple")
    rollback_timestamp: int | None = Field(
        default=None,
        ge=0,
        description="Unix timestamp disambiguating rollback markers",
    )
    prefix: str = Field(default=DEFAULT_PREFIX, description="Version tag prefix")

    @property
    def name(self) -> str:
        return render(self.environment, self.version, self.rollback_timestamp, self.prefix)

    @property
    def qualifier(self) -> str:
        """Everything after the version: environment suffix and rollback marker."""
        return self.name[len(self.prefix) + len(str(self.version)) :]

    @property
    def is_rollback(self) -> bool:
        return self.rollback_timestamp is not None

    def base(self) -> Tag:
        """Return the deployment tag this rollback marker was derived from."""
        if self.rollback_timestamp is None:
            return self
        return self.model_copy(update={"rollback_timestamp": None})

    def with_rollback(self, timestamp: int) -> Tag:
        return self.model_copy(update={"rollback_timestamp": timestamp})

    def __str__(self) -> str:
        return self.name


def render(
    environment: Environment,
    version: Version,
    rollback_timestamp: int | None = None,
    prefix: str = DEFAULT_PREFIX,
) -> str:
    """Render the tag string for an (environment, version, qualifier) triple.

    Args:
        environment: Target environment.
        version: Version triple.
        rollback_timestamp: Unix seconds to append as a rollback marker.
        prefix: Version prefix (default ``v``).

    Returns:
        The tag name, e.g. ``v1.4.2-staging``.
    """
    name = f"{prefix}{version}{environment.suffix}"
    if rollback_timestamp is not None:
        name = f"{name}-rollback-{rollback_timestamp}"
    return name


@lru_cache(maxsize=8)
def _tag_pattern(prefix: str) -> re.Pattern[str]:
    return re.compile(
        rf"^{re.escape(prefix)}{_SEGMENT}\.{_SEGMENT}\.{_SEGMENT}"
        r"(?:-(dev|staging))?"
        rf"(?:-rollback-{_SEGMENT})?$"
    )


def parse(tag_string: str, prefix: str = DEFAULT_PREFIX) -> Tag:
    """Decode a tag string into its environment, version and qualifier.

    Args:
        tag_string: Tag name such as ``v1.2.3-dev``.
        prefix: Version prefix the tag must start with.

    Returns:
        The decoded Tag.

    Raises:
        TagParseError: If the string matches none of the recognized patterns.
    """
    match = _tag_pattern(prefix).match(tag_string)
    if match is None:
        raise TagParseError(tag_string, prefix)

    major, minor, patch, env_suffix, rollback = match.groups()
    if env_suffix == "dev":
        environment = Environment.DEVELOPMENT
    elif env_suffix == "staging":
        environment = Environment.STAGING
    else:
        environment = Environment.PRODUCTION

    return Tag(
        environment=environment,
        version=Version(int(major), int(minor), int(patch)),
        rollback_timestamp=int(rollback) if rollback is not None else None,
        prefix=prefix,
    )


def try_parse(tag_string: str, prefix: str = DEFAULT_PREFIX) -> Tag | None:
    """Parse a tag, returning None instead of raising for foreign tag names."""
    try:
        return parse(tag_string, prefix)
    except TagParseError:
        return None


def is_deployment_tag(tag_string: str, prefix: str = DEFAULT_PREFIX) -> bool:
    """Return True for environment tags that are not rollback markers."""
    tag = try_parse(tag_string, prefix)
    return tag is not None and not tag.is_rollback


__all__: list[str] = [
    "DEFAULT_PREFIX",
    "ENVIRONMENT_ALIASES",
    "Environment",
    "Tag",
    "Version",
    "ZERO_VERSION",
    "is_deployment_tag",
    "parse",
    "render",
    "try_parse",
]
