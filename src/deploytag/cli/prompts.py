"""Interactive prompts for the deploytag CLI.

``ConsoleOperator`` answers the orchestrator's gates at the terminal. All
prompts are written to stderr; every yes/no gate defaults to no.
"""

from __future__ import annotations

from collections.abc import Sequence

import click

from deploytag.cli.output import format_plan
from deploytag.cli.utils import info, warn
from deploytag.schemas.deployment import CollisionResolution, DeploymentPlan, PreconditionWarning
from deploytag.tags import Version


def choose(title: str, options: Sequence[tuple[str, str]], default: int | None = None) -> str:
    """Show a numbered menu and return the key of the chosen option.

    Args:
        title: Menu heading.
        options: ``(key, label)`` pairs, shown in order starting at 1.
        default: 1-based option selected on an empty answer.

    Returns:
        The key of the selected option.
    """
    info("")
    info(title)
    for number, (_, label) in enumerate(options, start=1):
        info(f"  {number}) {label}")
    selection = click.prompt(
        "Select option",
        type=click.IntRange(1, len(options)),
        default=default,
        err=True,
    )
    return options[selection - 1][0]


class ConsoleOperator:
    """Operator that asks a human at the terminal."""

    def confirm(self, prompt: str, default: bool = False) -> bool:
        return click.confirm(prompt, default=default, err=True)

    def confirm_typed(self, prompt: str, expected: str) -> bool:
        answer = click.prompt(prompt, default="", show_default=False, err=True)
        if answer.strip() != expected:
            warn(f"Confirmation did not match '{expected}'")
            return False
        return True

    def override_warning(self, warning: PreconditionWarning) -> bool:
        warn(warning.message)
        for line in warning.details:
            info(f"    {line}")
        return click.confirm("Continue anyway?", default=False, err=True)

    def resolve_collision(self, tag: str) -> CollisionResolution:
        warn(f"Tag {tag} already exists")
        choice = choose(
            "What would you like to do?",
            [
                (CollisionResolution.REBUILD.value, f"Force rebuild (re-point {tag} at HEAD)"),
                (CollisionResolution.DIFFERENT_VERSION.value, "Choose a different version"),
                (CollisionResolution.CANCEL.value, "Cancel"),
            ],
        )
        return CollisionResolution(choice)

    def request_version(self, current: Version) -> str | None:
        answer = click.prompt(
            f"Enter a new version (latest is {current}, blank to stop)",
            default="",
            show_default=False,
            err=True,
        )
        return answer.strip() or None

    def show_plan(self, plan: DeploymentPlan) -> None:
        info(format_plan(plan))


__all__: list[str] = ["ConsoleOperator", "choose"]
