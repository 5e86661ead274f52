"""Command-line interface for deploytag.

The CLI is a thin layer over the deployment and rollback engine: it parses
arguments, asks the operator's questions and prints results. All decisions
are made by ``deploytag.deployment`` and ``deploytag.rollback``.
"""

from __future__ import annotations

from deploytag.cli.main import cli, main

__all__: list[str] = ["cli", "main"]
