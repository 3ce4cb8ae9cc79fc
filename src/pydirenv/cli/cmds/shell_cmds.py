"""
CLI commands the shell integration calls.

Usage:
    eval "$(pydirenv hook bash)"    # in ~/.bashrc
    pydirenv export bash            # run by the hook before every prompt
    pydirenv dump                   # current environment as JSON
"""

from __future__ import annotations

import json
import os
from typing import Annotated

import typer

from pydirenv.cli.output import print_cli_error, print_cli_info, print_export_summary
from pydirenv.cli.runtime import build_orchestrator, current_env, load_cli_settings
from pydirenv.errors import DirenvError
from pydirenv.logging import get_logger
from pydirenv.shells import get_shell

logger = get_logger("cli.shell")

ShellArg = Annotated[str, typer.Argument(help="Target shell: bash, zsh, fish or json")]


def export_cmd(shell: ShellArg):
    """Print shell code that brings the environment in line with the working directory."""
    try:
        dialect = get_shell(shell)
        result = build_orchestrator().export()
    except DirenvError as e:
        print_cli_error(e.message, hint=e.hint)
        raise typer.Exit(1)

    logger.debug("export computed", action=result.action, changes=result.diff.summary())
    if result.action in ("load", "reload"):
        print_cli_info(f"loading {result.rc.path}")
    elif result.action == "unload":
        print_cli_info("unloading")

    if result.error is not None:
        print_cli_error(result.error.message, hint=result.error.hint)

    if result.diff:
        print_export_summary(result.diff)
        code = dialect.export(result.diff)
        if code:
            # Values keep undecodable bytes as surrogate escapes; emit the original bytes.
            typer.echo(os.fsencode(code))

    if result.error is not None:
        raise typer.Exit(1)


def hook_cmd(shell: ShellArg):
    """Print the snippet that installs the prompt hook."""
    try:
        settings = load_cli_settings()
        typer.echo(get_shell(shell).hook(settings.self_path), nl=False)
    except DirenvError as e:
        print_cli_error(e.message, hint=e.hint)
        raise typer.Exit(1)


def dump_cmd():
    """Print the current environment as JSON."""
    typer.echo(json.dumps(current_env().to_dict(), indent=2, sort_keys=True))


def register(parent: typer.Typer):
    """Register shell integration commands with the parent CLI app."""
    parent.command("export", rich_help_panel="Shell")(export_cmd)
    parent.command("hook", rich_help_panel="Shell")(hook_cmd)
    parent.command("dump", rich_help_panel="Shell")(dump_cmd)
