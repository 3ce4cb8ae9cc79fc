"""
CLI commands that grant and withdraw trust.

Usage:
    pydirenv allow              # approve the nearest .envrc
    pydirenv allow ~/project    # approve ~/project/.envrc
    pydirenv deny               # withdraw the approval (alias: revoke)
"""

from __future__ import annotations

from typing import Annotated

import typer

from pydirenv.cli.output import (
    print_cli_error,
    print_cli_info,
    print_cli_success,
    print_cli_warning,
)
from pydirenv.cli.runtime import load_cli_settings, resolve_script
from pydirenv.errors import DirenvError
from pydirenv.trust import TrustStore

PathArg = Annotated[
    str | None,
    typer.Argument(help="Script or directory (default: nearest script above the working directory)"),
]


def allow_cmd(path: PathArg = None):
    """Approve a directory script's current content."""
    try:
        settings = load_cli_settings()
        rc = resolve_script(settings, path)
        store = TrustStore(settings.allow_dir)
        store.approve(rc.path, rc.signature())
    except DirenvError as e:
        print_cli_error(e.message, hint=e.hint)
        raise typer.Exit(1)

    print_cli_success("Allowed", details=rc.path)
    if settings.whitelist.match(rc.path) is not None:
        print_cli_warning("this script is also covered by the whitelist")


def deny_cmd(path: PathArg = None):
    """Withdraw the approval of a directory script."""
    try:
        settings = load_cli_settings()
        rc = resolve_script(settings, path)
        removed = TrustStore(settings.allow_dir).revoke(rc.path)
    except DirenvError as e:
        print_cli_error(e.message, hint=e.hint)
        raise typer.Exit(1)

    if removed:
        print_cli_success("Denied", details=rc.path)
    else:
        print_cli_info(f"{rc.path} was not allowed")


def register(parent: typer.Typer):
    """Register trust commands with the parent CLI app."""
    parent.command("allow", rich_help_panel="Trust")(allow_cmd)
    parent.command("deny", rich_help_panel="Trust")(deny_cmd)
    parent.command("revoke", rich_help_panel="Trust", hidden=True)(deny_cmd)
