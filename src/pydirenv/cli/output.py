"""Console output for the CLI.

stdout is reserved for shell code and machine-readable output; everything
meant for the user goes to stderr.
"""

from __future__ import annotations

from typing import Any

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from pydirenv.diff import EnvDiff
from pydirenv.env import STATE_VARS

console = Console()
err_console = Console(stderr=True, soft_wrap=True)

__all__ = [
    "console",
    "err_console",
    "print_cli_error",
    "print_cli_warning",
    "print_cli_success",
    "print_cli_info",
    "print_export_summary",
    "print_status",
]


def print_cli_error(message: str, hint: str | None = None) -> None:
    err_console.print(f"[bold red]✗[/bold red] [red]{escape(message)}[/red]", highlight=False)
    if hint:
        err_console.print(f"  [dim]{escape(hint)}[/dim]", highlight=False)


def print_cli_warning(message: str) -> None:
    err_console.print(f"[yellow]![/yellow] {escape(message)}", highlight=False)


def print_cli_success(message: str, details: str | None = None) -> None:
    if details:
        err_console.print(f"[green]✓[/green] {escape(message)} [dim]{escape(details)}[/dim]", highlight=False)
    else:
        err_console.print(f"[green]✓[/green] {escape(message)}", highlight=False)


def print_cli_info(message: str) -> None:
    err_console.print(f"[dim]pydirenv:[/dim] {escape(message)}", highlight=False)


def print_export_summary(diff: EnvDiff) -> None:
    """One-line ``export +FOO ~PATH`` summary, state variables left out."""
    visible = EnvDiff({k: c for k, c in diff.changes.items() if k not in STATE_VARS})
    if visible:
        print_cli_info(f"export {visible.summary()}")


def _format_trust(found: dict[str, Any]) -> str:
    if "error" in found:
        return f"[red]{found['error']}[/red]"
    if found.get("trusted"):
        return f"[green]allowed[/green] [dim]({found['reason']})[/dim]"
    return f"[red]blocked[/red] [dim]({found['reason']})[/dim]"


def print_status(status: dict[str, Any]) -> None:
    settings = status["settings"]

    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("key", style="bold")
    table.add_column("value")
    for key in ("work_dir", "config_dir", "toml_path", "data_dir", "allow_dir", "bash_path"):
        table.add_row(key, str(settings.get(key) or "-"))
    table.add_row("warn_timeout", f"{settings['warn_timeout']:g}s")
    table.add_row("strict_env", str(settings["strict_env"]).lower())
    table.add_row("load_dotenv", str(settings["load_dotenv"]).lower())
    console.print(Panel(table, title="Settings", border_style="blue"))

    loaded = status.get("loaded")
    if loaded:
        stale = " [yellow](stale)[/yellow]" if loaded["stale"] else ""
        console.print(f"[bold]Loaded:[/bold] {loaded['path']}{stale}")
        for path in loaded["watches"]:
            console.print(f"  [dim]watching[/dim] {path}")
    else:
        console.print("[bold]Loaded:[/bold] [dim]none[/dim]")

    found = status.get("found")
    if found:
        console.print(f"[bold]Found:[/bold]  {found['path']} {_format_trust(found)}")
    else:
        console.print("[bold]Found:[/bold]  [dim]none[/dim]")
