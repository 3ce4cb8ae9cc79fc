from __future__ import annotations

import typer

from pydirenv import __version__
from pydirenv.cli.cmds import register_shell, register_status, register_trust
from pydirenv.cli.output import console
from pydirenv.logging import configure_logging

_TYPER_HELP = """Load and unload environment variables depending on the current directory.

**Setup:**

* `eval "$(pydirenv hook bash)"` in `~/.bashrc` (or `zsh`, `fish`)
* `pydirenv allow` in a directory with a trusted `.envrc`
"""


def version_callback(value: bool):
    """Show version and exit."""
    if value:
        console.print(f"pydirenv {__version__}")
        raise typer.Exit()


app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=_TYPER_HELP,
    rich_markup_mode="markdown",
)


@app.callback()
def main_callback(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
):
    """pydirenv: per-directory environments for your shell."""
    configure_logging()


register_trust(app)
register_shell(app)
register_status(app)


def main():
    app()


if __name__ == "__main__":
    main()
