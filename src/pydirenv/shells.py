"""Shell dialects: render an EnvDiff as code the shell evaluates.

Each dialect knows how to export and unset variables and how to install the
prompt hook that calls ``pydirenv export <shell>`` before every prompt.
"""

from __future__ import annotations

import json
import re
import shlex
from abc import ABC, abstractmethod

from pydirenv.diff import EnvDiff
from pydirenv.errors import DirenvError
from pydirenv.logging import get_logger

logger = get_logger("shells")

__all__ = ["Shell", "Bash", "Zsh", "Fish", "Json", "get_shell", "SHELLS"]

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class Shell(ABC):
    """A target shell."""

    name: str = ""

    @abstractmethod
    def export(self, diff: EnvDiff) -> str:
        """Shell code that applies ``diff``."""

    @abstractmethod
    def hook(self, self_path: str) -> str:
        """Snippet installing the prompt hook."""


class _PosixShell(Shell):
    def export(self, diff: EnvDiff) -> str:
        lines = []
        for key, change in diff.changes.items():
            if not _IDENTIFIER.match(key):
                logger.debug("skipping variable the shell cannot name", key=key)
                continue
            if change.new is None:
                lines.append(f"unset {key};")
            else:
                lines.append(f"export {key}={shlex.quote(change.new)};")
        return "\n".join(lines)


class Bash(_PosixShell):
    name = "bash"

    def hook(self, self_path: str) -> str:
        cmd = shlex.quote(self_path)
        return f"""_pydirenv_hook() {{
  local previous_exit_status=$?;
  trap -- '' SIGINT;
  eval "$({cmd} export bash)";
  trap - SIGINT;
  return $previous_exit_status;
}};
if [[ ";${{PROMPT_COMMAND[*]:-}};" != *";_pydirenv_hook;"* ]]; then
  PROMPT_COMMAND="_pydirenv_hook${{PROMPT_COMMAND:+;$PROMPT_COMMAND}}"
fi
"""


class Zsh(_PosixShell):
    name = "zsh"

    def hook(self, self_path: str) -> str:
        cmd = shlex.quote(self_path)
        return f"""_pydirenv_hook() {{
  trap -- '' SIGINT
  eval "$({cmd} export zsh)"
  trap - SIGINT
}}
typeset -ag precmd_functions
if (( ! ${{precmd_functions[(I)_pydirenv_hook]}} )); then
  precmd_functions=(_pydirenv_hook $precmd_functions)
fi
typeset -ag chpwd_functions
if (( ! ${{chpwd_functions[(I)_pydirenv_hook]}} )); then
  chpwd_functions=(_pydirenv_hook $chpwd_functions)
fi
"""


def _fish_quote(value: str) -> str:
    return "'" + value.replace("\\", "\\\\").replace("'", "\\'") + "'"


class Fish(Shell):
    """fish keeps ``PATH`` as a list, so it is split on ``:``."""

    name = "fish"

    def export(self, diff: EnvDiff) -> str:
        lines = []
        for key, change in diff.changes.items():
            if not _IDENTIFIER.match(key):
                logger.debug("skipping variable the shell cannot name", key=key)
                continue
            if change.new is None:
                lines.append(f"set -e {key};")
            elif key == "PATH" and change.new:
                parts = " ".join(_fish_quote(p) for p in change.new.split(":"))
                lines.append(f"set -gx {key} {parts};")
            else:
                lines.append(f"set -gx {key} {_fish_quote(change.new)};")
        return "\n".join(lines)

    def hook(self, self_path: str) -> str:
        cmd = _fish_quote(self_path)
        return f"""function __pydirenv_export_eval --on-event fish_prompt
    {cmd} export fish | source
end
"""


class Json(Shell):
    """Machine-readable output: variable name to new value (null = unset)."""

    name = "json"

    def export(self, diff: EnvDiff) -> str:
        if not diff:
            return ""
        return json.dumps({key: change.new for key, change in diff.changes.items()}, indent=2, sort_keys=True)

    def hook(self, self_path: str) -> str:
        raise DirenvError("json has no prompt hook", hint="Use one of: bash, zsh, fish")


SHELLS: dict[str, type[Shell]] = {cls.name: cls for cls in (Bash, Zsh, Fish, Json)}


def get_shell(name: str) -> Shell:
    """Dialect for ``name``; a path like ``/bin/zsh`` is accepted too."""
    key = name.rsplit("/", 1)[-1].lower()
    try:
        return SHELLS[key]()
    except KeyError:
        raise DirenvError(
            f"unknown shell {name!r}",
            hint=f"Supported shells: {', '.join(sorted(SHELLS))}",
        ) from None
