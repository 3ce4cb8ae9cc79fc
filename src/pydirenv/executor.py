"""Script execution.

Execution is a capability: anything with ``execute(path, env)`` returning an
:class:`ExecutionResult` can run directory scripts. The trust gate and the
diff engine never see which interpreter backs it.

- :class:`BashExecutor` sources ``.envrc`` files in bash with a small
  helper library (``PATH_add``, ``watch_file``, ``source_env``, ...), then
  dumps the resulting environment as JSON.
- :class:`DotenvExecutor` layers ``.env`` files onto the base environment
  with python-dotenv. No code runs.
"""

from __future__ import annotations

import json
import os
import shlex
import subprocess
import sys
import tempfile
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, TextIO, runtime_checkable

from dotenv import dotenv_values

from pydirenv.diff import is_ignored_key
from pydirenv.env import DIRENV_IN_ENVRC, DOTENV_FILENAME, STATE_VARS, Env
from pydirenv.errors import RCExecutionError
from pydirenv.logging import get_logger

logger = get_logger("executor")

__all__ = [
    "ExecutionResult",
    "ScriptExecutor",
    "BashExecutor",
    "DotenvExecutor",
    "ExecutorSelector",
    "normalize_result_env",
    "WATCH_LOG_VAR",
]

# Temp file the bash helpers append watched paths to, one per line.
WATCH_LOG_VAR = "__PYDIRENV_WATCH_LOG"

# Dumps the environment from inside the script's shell. -I keeps a
# script-provided PYTHONHOME/PYTHONPATH from breaking the interpreter.
# Python may coerce a C locale by exporting LC_CTYPE; the shell passes the
# original value ("x" + value, or "" when unset) so it can be put back.
LC_CTYPE_VAR = "__PYDIRENV_LC_CTYPE"
_DUMP_SNIPPET = f"""\
import json, os, sys
env = dict(os.environ)
saved = env.pop("{LC_CTYPE_VAR}", "")
if saved:
    env["LC_CTYPE"] = saved[1:]
else:
    env.pop("LC_CTYPE", None)
sys.stdout.write(json.dumps(env))
"""

_STDLIB = r"""
watch_file() {
  local f
  for f in "$@"; do
    case "$f" in /*) ;; *) f="$PWD/$f" ;; esac
    printf '%s\n' "$f" >> "$__PYDIRENV_WATCH_LOG"
  done
}

log_status() {
  printf 'pydirenv: %s\n' "$*" >&2
}

log_error() {
  printf 'pydirenv: error %s\n' "$*" >&2
}

has() {
  type "$1" >/dev/null 2>&1
}

PATH_add() {
  local d
  for d in "$@"; do
    case "$d" in /*) ;; *) d="$PWD/$d" ;; esac
    PATH="$d${PATH:+:$PATH}"
  done
  export PATH
}

source_env() {
  local rc="$1"
  if [ -d "$rc" ]; then
    rc="$rc/.envrc"
  fi
  if [ ! -f "$rc" ]; then
    log_error "source_env: $rc not found"
    return 1
  fi
  watch_file "$rc"
  pushd "$(dirname "$rc")" >/dev/null || return 1
  # shellcheck disable=SC1090
  . "./$(basename "$rc")"
  popd >/dev/null || return 1
}

source_up() {
  local dir
  dir="$(dirname "$PWD")"
  while :; do
    if [ -f "$dir/.envrc" ]; then
      source_env "$dir/.envrc"
      return $?
    fi
    [ "$dir" = "/" ] && break
    dir="$(dirname "$dir")"
  done
  log_error "source_up: no .envrc found above $PWD"
  return 1
}

dotenv() {
  local f="${1:-.env}"
  if [ ! -f "$f" ]; then
    log_error "dotenv: $f not found"
    return 1
  fi
  watch_file "$f"
  set -a
  # shellcheck disable=SC1090
  . "$f"
  set +a
}
"""


# =============================================================================
# Result and protocol
# =============================================================================


@dataclass(frozen=True)
class ExecutionResult:
    """Environment produced by a script.

    Attributes:
        env: Snapshot after the script ran, normalized against the base.
        watched: Extra files the script declared it depends on.
        duration: Wall time in seconds.
    """

    env: Env
    watched: tuple[str, ...] = ()
    duration: float = 0.0


@runtime_checkable
class ScriptExecutor(Protocol):
    """Runs one script against a base environment.

    Implementations must not mutate ``env`` and must raise
    :class:`RCExecutionError` when the script fails.
    """

    def execute(self, path: str, env: Env) -> ExecutionResult: ...


def normalize_result_env(base: Env, result: dict[str, str]) -> Env:
    """Undo the shell's own bookkeeping in ``result``.

    Shell-maintained variables (``PWD``, ``SHLVL``, ``_``, ...), executor
    bookkeeping and pydirenv state variables take their value from ``base``,
    so they never show up as part of the script's effect.
    """
    data = dict(result)
    for key in set(data) | set(base):
        if is_ignored_key(key) or key in STATE_VARS or key in (WATCH_LOG_VAR, DIRENV_IN_ENVRC):
            if key in base:
                data[key] = base[key]
            else:
                data.pop(key, None)
    return Env(data)


# =============================================================================
# Slow script warning
# =============================================================================


def _default_slow_notice(path: str, elapsed: float) -> None:
    print(
        f"pydirenv: ({path}) is taking a while to execute ({elapsed:.0f}s). Use CTRL-C to give up.",
        file=sys.stderr,
    )


class _SlowScriptWarning:
    """Advisory timer: warns once when a script runs past the threshold."""

    def __init__(
        self,
        path: str,
        threshold: float,
        notify: Callable[[str, float], None] | None,
    ) -> None:
        self._path = path
        self._threshold = threshold
        self._notify = notify or _default_slow_notice
        self._timer: threading.Timer | None = None
        self.fired = False

    def _fire(self) -> None:
        self.fired = True
        logger.warning("script exceeded warn timeout", path=self._path, timeout=self._threshold)
        self._notify(self._path, self._threshold)

    def __enter__(self) -> _SlowScriptWarning:
        if self._threshold > 0:
            self._timer = threading.Timer(self._threshold, self._fire)
            self._timer.daemon = True
            self._timer.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        if self._timer is not None:
            self._timer.cancel()


# =============================================================================
# Bash
# =============================================================================


class BashExecutor:
    """Source an ``.envrc`` in bash and capture the resulting environment.

    Example:
        >>> executor = BashExecutor(bash_path="/bin/bash")
        >>> result = executor.execute("/project/.envrc", Env.from_os())
        >>> result.env["PATH"]
        '/project/bin:/usr/bin'
    """

    def __init__(
        self,
        bash_path: str = "bash",
        *,
        strict_env: bool = False,
        disable_stdin: bool = False,
        warn_timeout: float = 5.0,
        python_path: str | None = None,
        on_slow: Callable[[str, float], None] | None = None,
        stderr: TextIO | None = None,
    ) -> None:
        self.bash_path = bash_path
        self.strict_env = strict_env
        self.disable_stdin = disable_stdin
        self.warn_timeout = warn_timeout
        self.python_path = python_path or sys.executable
        self._on_slow = on_slow
        self._stderr = stderr

    def build_command(self, path: str) -> list[str]:
        """argv that sources ``path`` and dumps the environment to stdout."""
        prelude = "set -euo pipefail\n" if self.strict_env else ""
        main = (
            f"source_env {shlex.quote(path)} >&2 && "
            f'{LC_CTYPE_VAR}="${{LC_CTYPE+x$LC_CTYPE}}" '
            f"exec {shlex.quote(self.python_path)} -I -c {shlex.quote(_DUMP_SNIPPET)}"
        )
        return [self.bash_path, "--noprofile", "--norc", "-c", f"{prelude}{_STDLIB}\n{main}"]

    def execute(self, path: str, env: Env) -> ExecutionResult:
        path = os.path.abspath(path)
        fd, watch_log = tempfile.mkstemp(prefix="pydirenv-watch-", suffix=".log")
        os.close(fd)

        run_env = env.update({DIRENV_IN_ENVRC: "1", WATCH_LOG_VAR: watch_log})
        logger.debug("executing script", path=path, bash=self.bash_path)

        start = time.monotonic()
        try:
            with _SlowScriptWarning(path, self.warn_timeout, self._on_slow):
                proc = subprocess.run(
                    self.build_command(path),
                    env=run_env.to_dict(),
                    cwd=os.path.dirname(path),
                    stdin=subprocess.DEVNULL if self.disable_stdin else None,
                    capture_output=True,
                    check=False,
                )
            watched = _read_watch_log(watch_log)
        except FileNotFoundError as e:
            raise RCExecutionError(path, reason=f"interpreter not found: {self.bash_path}") from e
        except OSError as e:
            raise RCExecutionError(path, reason=str(e)) from e
        finally:
            try:
                os.unlink(watch_log)
            except OSError:
                pass
        duration = time.monotonic() - start

        # Script output is arbitrary bytes; it is only ever shown to the user.
        stderr = proc.stderr.decode("utf-8", errors="replace")
        if proc.returncode != 0:
            logger.info("script failed", path=path, exit_code=proc.returncode)
            raise RCExecutionError(path, exit_code=proc.returncode, stderr=stderr)

        if stderr:
            (self._stderr or sys.stderr).write(stderr)

        try:
            dumped = json.loads(proc.stdout)
        except ValueError as e:
            raise RCExecutionError(path, reason=f"could not read environment dump: {e}") from e
        if not isinstance(dumped, dict):
            raise RCExecutionError(path, reason="environment dump is not an object")

        logger.debug("script finished", path=path, duration=round(duration, 3))
        return ExecutionResult(
            env=normalize_result_env(env, dumped),
            watched=tuple(p for p in watched if p != path),
            duration=duration,
        )


def _read_watch_log(path: str) -> list[str]:
    try:
        lines = Path(path).read_text(encoding="utf-8").splitlines()
    except FileNotFoundError:
        return []
    seen: dict[str, None] = {}
    for line in lines:
        if line:
            seen[os.path.normpath(line)] = None
    return list(seen)


# =============================================================================
# Dotenv
# =============================================================================


class DotenvExecutor:
    """Load a ``.env`` file without running any code.

    Values are taken literally (no ``${VAR}`` interpolation) so the result
    depends only on the file and the base snapshot. Keys declared without a
    value are skipped.
    """

    def execute(self, path: str, env: Env) -> ExecutionResult:
        start = time.monotonic()
        try:
            values = dotenv_values(path, interpolate=False)
        except (OSError, UnicodeDecodeError) as e:
            raise RCExecutionError(path, reason=str(e)) from e

        loaded = {k: v for k, v in values.items() if v is not None}
        logger.debug("dotenv loaded", path=path, count=len(loaded))
        return ExecutionResult(
            env=normalize_result_env(env, {**env.to_dict(), **loaded}),
            duration=time.monotonic() - start,
        )


# =============================================================================
# Selection
# =============================================================================


class ExecutorSelector:
    """Picks the executor for a script by file name."""

    def __init__(self, bash: ScriptExecutor, dotenv: ScriptExecutor | None = None) -> None:
        self._bash = bash
        self._dotenv = dotenv or DotenvExecutor()

    def for_path(self, path: str) -> ScriptExecutor:
        if os.path.basename(path) == DOTENV_FILENAME:
            return self._dotenv
        return self._bash

    def execute(self, path: str, env: Env) -> ExecutionResult:
        return self.for_path(path).execute(path, env)
