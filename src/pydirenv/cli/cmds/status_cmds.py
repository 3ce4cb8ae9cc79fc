"""
CLI command that reports what pydirenv sees.

Usage:
    pydirenv status          # settings, loaded and found script
    pydirenv status --json   # same, machine-readable
"""

from __future__ import annotations

import json
from typing import Annotated

import typer

from pydirenv.cli.output import print_cli_error, print_status
from pydirenv.cli.runtime import build_orchestrator
from pydirenv.errors import DirenvError


def status_cmd(
    output_json: Annotated[
        bool,
        typer.Option(
            "--json",
            "-j",
            help="Output as JSON",
        ),
    ] = False,
):
    """Show settings, the loaded script and the script for this directory."""
    try:
        status = build_orchestrator().status()
    except DirenvError as e:
        print_cli_error(e.message, hint=e.hint)
        raise typer.Exit(1)

    if output_json:
        typer.echo(json.dumps(status, indent=2))
    else:
        print_status(status)


def register(parent: typer.Typer):
    """Register the status command with the parent CLI app."""
    parent.command("status")(status_cmd)
