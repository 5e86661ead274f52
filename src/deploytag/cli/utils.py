"""CLI utility functions and error handling.

This module provides shared utilities for the deploytag CLI, including:
- Exit code constants
- Output helpers for consistent stderr/stdout usage
- Mapping of deploytag errors to exit codes

Example:
    from deploytag.cli.utils import error_exit, ExitCode

    if environment is None:
        error_exit("No environment selected", exit_code=ExitCode.USAGE_ERROR)
"""

from __future__ import annotations

import sys
from enum import IntEnum
from typing import TYPE_CHECKING

import click
import structlog

from deploytag.errors import DeployError, DeploymentCancelledError

if TYPE_CHECKING:
    from typing import NoReturn

logger = structlog.get_logger(__name__)


class ExitCode(IntEnum):
    """Exit codes for CLI commands.

    Each deploytag error class carries the matching code in ``exit_code``.
    """

    SUCCESS = 0
    """Command completed (also: preview, unobserved run, deferred version choice)."""

    GENERAL_ERROR = 1
    """General error, or cancelled at a confirmation gate."""

    USAGE_ERROR = 2
    """Invalid usage (bad arguments, conflicting options)."""

    VALIDATION_ERROR = 3
    """Malformed version, tag or increment kind."""

    COLLISION = 4
    """Tag already exists and was not resolved."""

    PUSH_REJECTED = 5
    """The remote rejected the tag push."""

    ROLLBACK_TARGET = 6
    """Rollback target invalid or environment unsupported."""

    DEPLOYMENT_FAILED = 7
    """The CI run for the pushed tag failed."""

    QUERY_ERROR = 8
    """git or CI query failed."""


def error(message: str, **context: str | int | bool | None) -> None:
    """Print an error message to stderr.

    Args:
        message: Error message to display.
        **context: Optional context key-value pairs to include.

    Example:
        error("Push rejected", tag="v1.2.0")
        # Output: Error: Push rejected (tag=v1.2.0)
    """
    if context:
        context_str = ", ".join(f"{k}={v}" for k, v in context.items() if v is not None)
        full_message = f"Error: {message} ({context_str})"
    else:
        full_message = f"Error: {message}"

    click.echo(full_message, err=True)


def error_exit(
    message: str,
    exit_code: int = ExitCode.GENERAL_ERROR,
    **context: str | int | bool | None,
) -> NoReturn:
    """Print an error message to stderr and exit with a code.

    Raises:
        SystemExit: Always exits with the specified code.
    """
    error(message, **context)
    sys.exit(exit_code)


def warn(message: str, **context: str | int | bool | None) -> None:
    """Print a warning message to stderr."""
    if context:
        context_str = ", ".join(f"{k}={v}" for k, v in context.items() if v is not None)
        full_message = f"Warning: {message} ({context_str})"
    else:
        full_message = f"Warning: {message}"

    click.echo(full_message, err=True)


def success(message: str) -> None:
    """Print a success message to stdout."""
    click.echo(message)


def info(message: str) -> None:
    """Print an informational message to stderr.

    Used for progress updates that should not be captured by stdout redirection.
    """
    click.echo(message, err=True)


def exit_for_error(exc: DeployError, action: str = "Deployment") -> NoReturn:
    """Report a deploytag error and exit with its code.

    A cancellation is reported as a warning; everything else as an error.

    Raises:
        SystemExit: Always, with ``exc.exit_code``.
    """
    if isinstance(exc, DeploymentCancelledError):
        warn(exc.reason)
        sys.exit(exc.exit_code)

    logger.debug(
        "command_failed",
        action=action,
        error_type=type(exc).__name__,
        exit_code=exc.exit_code,
    )
    error_exit(f"{action} failed: {exc}", exit_code=exc.exit_code)


__all__: list[str] = [
    "ExitCode",
    "error",
    "error_exit",
    "exit_for_error",
    "info",
    "success",
    "warn",
]
