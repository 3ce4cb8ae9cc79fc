"""Per-prompt driver: find, load, record and revert directory scripts.

The orchestrator keeps no memory between invocations. Everything it needs
to undo a previous load is read back from the environment:

    DIRENV_DIR      "-<dir>" of the active script
    DIRENV_FILE     active script path
    DIRENV_WATCHES  encoded watch set
    DIRENV_DIFF     encoded EnvDiff, relative to the environment before load

State machine (driven externally, one transition per prompt):

    NoActiveScript --load--> Loaded --revert--> NoActiveScript
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any

from pydirenv.config import Settings
from pydirenv.diff import EnvDiff
from pydirenv.env import (
    DIRENV_DIFF,
    DIRENV_DIR,
    DIRENV_FILE,
    DIRENV_WATCHES,
    PENDING_MARKER,
    RC_FILENAME,
    Env,
)
from pydirenv.errors import DiffDecodeError, DirenvError, RCError, log_exception
from pydirenv.executor import BashExecutor, ExecutorSelector, ScriptExecutor
from pydirenv.logging import get_logger
from pydirenv.rc import RC, find_nearest
from pydirenv.trust import TrustDecision, TrustStore

logger = get_logger("orchestrator")

__all__ = [
    "Orchestrator",
    "RecordedState",
    "EnterResult",
    "ExportResult",
]


# =============================================================================
# Results
# =============================================================================


@dataclass(frozen=True)
class RecordedState:
    """State variables written into the outgoing environment."""

    dir: str
    file: str
    watches: str
    diff: str = ""

    def to_env(self) -> dict[str, str]:
        values = {
            DIRENV_DIR: PENDING_MARKER + self.dir,
            DIRENV_FILE: self.file,
            DIRENV_WATCHES: self.watches,
        }
        if self.diff:
            values[DIRENV_DIFF] = self.diff
        return values


@dataclass(frozen=True)
class EnterResult:
    """Outcome of loading the script for a directory.

    Attributes:
        env: Outgoing snapshot, state variables included.
        diff: What the script changed, relative to the stateless base.
        rc: The script that was loaded (None if there was none).
        decision: Trust decision that let it run.
        state: Recorded state written into ``env``.
    """

    env: Env
    diff: EnvDiff = field(default_factory=EnvDiff)
    rc: RC | None = None
    decision: TrustDecision | None = None
    state: RecordedState | None = None


@dataclass(frozen=True)
class ExportResult:
    """What one prompt should apply to the shell.

    Attributes:
        env: Environment the shell should end up with.
        diff: ``EnvDiff.compute(current_env, env)``; render with a shell dialect.
        action: "none", "load", "reload", "unload" or "blocked".
        rc: Script that is active after this export, if any.
        error: Trust or execution failure to report, if any.
    """

    env: Env
    diff: EnvDiff = field(default_factory=EnvDiff)
    action: str = "none"
    rc: RC | None = None
    error: DirenvError | None = None

    @property
    def changed(self) -> bool:
        return bool(self.diff)

    def summary(self) -> str:
        parts = [self.action]
        if self.rc is not None:
            parts.append(self.rc.path)
        parts.append(self.diff.summary())
        if self.error is not None:
            parts.append(f"error: {self.error.message}")
        return " | ".join(parts)


# =============================================================================
# Orchestrator
# =============================================================================


class Orchestrator:
    """Finds the script for a directory, loads it, records and reverts it.

    Example:
        >>> settings = load_settings(os.environ)
        >>> orch = Orchestrator(settings, Env.from_os())
        >>> result = orch.export()
        >>> print(get_shell("bash").export(result.diff))
    """

    def __init__(
        self,
        settings: Settings,
        env: Env,
        trust_store: TrustStore | None = None,
        executor: ScriptExecutor | None = None,
    ) -> None:
        self.settings = settings
        self.env = env
        self.trust_store = trust_store or TrustStore(settings.allow_dir)
        self.executor = executor or ExecutorSelector(
            BashExecutor(
                settings.bash_path,
                strict_env=settings.strict_env,
                disable_stdin=settings.disable_stdin,
                warn_timeout=settings.warn_timeout,
            )
        )

    # =========================================================================
    # Lookup
    # =========================================================================

    def loaded_rc(self, env: Env | None = None) -> RC | None:
        """Handle for the script recorded in ``env`` (default: ``self.env``), if any."""
        env = env if env is not None else self.env
        rc_dir = env.get(DIRENV_DIR, "")
        if rc_dir.startswith(PENDING_MARKER):
            rc_dir = rc_dir[len(PENDING_MARKER) :]
        if not rc_dir:
            return None
        path = env.get(DIRENV_FILE) or os.path.join(rc_dir, RC_FILENAME)
        return RC.from_recorded_state(path, env.get(DIRENV_WATCHES, ""))

    def find_rc(self, work_dir: str | None = None) -> RC | None:
        return find_nearest(work_dir or self.settings.work_dir, self.settings.script_names)

    # =========================================================================
    # Transitions
    # =========================================================================

    def enter_directory(self, new_dir: str, current_env: Env) -> EnterResult:
        """Load the script governing ``new_dir`` on top of ``current_env``.

        State variables already present in ``current_env`` are not part of
        the base the script runs against. ``current_env`` itself is never
        modified.

        Raises:
            RCNotTrustedError: The script is unapproved or stale.
            RCExecutionError: The script failed.
        """
        rc = self.find_rc(new_dir)
        if rc is None:
            return EnterResult(env=current_env.without_state())
        return self._load(rc, current_env)

    def _load(self, rc: RC, current_env: Env) -> EnterResult:
        base = current_env.without_state()
        result = rc.load(base, self.trust_store, self.settings.whitelist, self.executor)
        state = RecordedState(
            dir=rc.dir,
            file=rc.path,
            watches=result.watches.marshal(),
            diff=result.diff.encode(),
        )
        return EnterResult(
            env=result.env.update(state.to_env()),
            diff=result.diff,
            rc=rc,
            decision=result.decision,
            state=state,
        )

    def revert(self, current_env: Env, recorded_diff: str | None) -> Env:
        """Undo a recorded diff.

        Without a diff this is a copy of ``current_env``. A diff that cannot
        be decoded is treated as "no active diff": the state variables are
        dropped so the next load starts clean.
        """
        if not recorded_diff:
            return current_env.copy()
        try:
            diff = EnvDiff.decode(recorded_diff)
        except DiffDecodeError as e:
            log_exception(logger, "discarding corrupt recorded diff", e, include_traceback=False)
            return current_env.without_state()
        # Shell-maintained variables are never restored from a recorded diff.
        return diff.filter_ignored().reverse().apply(current_env)

    def export(self, current_env: Env | None = None) -> ExportResult:
        """Compute what the shell must change for the working directory.

        A refused or failing script leaves the previous script unloaded and
        records only its directory and watch set, so the check is retried
        once the script or its approval changes.
        """
        env = current_env if current_env is not None else self.env
        loaded = self.loaded_rc(env)
        to_load = self.find_rc()

        if loaded is None and to_load is None:
            return ExportResult(env=env)

        if to_load is not None and to_load.same(loaded) and not loaded.is_stale():
            logger.debug("script unchanged", path=to_load.path)
            return ExportResult(env=env, rc=loaded)

        previous = self.revert(env, env.get(DIRENV_DIFF))

        if to_load is None:
            logger.info("unloading", path=loaded.path)
            new_env = previous.without_state()
            return ExportResult(env=new_env, diff=EnvDiff.compute(env, new_env), action="unload")

        action = "reload" if to_load.same(loaded) else "load"
        try:
            entered = self.enter_directory(self.settings.work_dir, previous)
        except RCError as e:
            logger.info("script refused", path=to_load.path, error=e.message)
            watches = to_load.base_watches(self.trust_store)
            state = RecordedState(dir=to_load.dir, file=to_load.path, watches=watches.marshal())
            new_env = previous.without_state().update(state.to_env())
            return ExportResult(
                env=new_env,
                diff=EnvDiff.compute(env, new_env),
                action="blocked",
                rc=to_load,
                error=e,
            )

        if entered.rc is None:
            # The script vanished between lookup and load.
            action = "unload"
        return ExportResult(
            env=entered.env,
            diff=EnvDiff.compute(env, entered.env),
            action=action,
            rc=entered.rc,
        )

    # =========================================================================
    # Introspection
    # =========================================================================

    def status(self) -> dict[str, Any]:
        """Settings, recorded script and found script with its trust."""
        loaded = self.loaded_rc()
        found = self.find_rc()

        found_info: dict[str, Any] | None = None
        if found is not None:
            found_info = {"path": found.path}
            try:
                found_info.update(found.trust(self.trust_store, self.settings.whitelist).to_dict())
            except RCError as e:
                found_info["error"] = e.message
            found_info["record"] = str(self.trust_store.record_path(found.path))

        loaded_info: dict[str, Any] | None = None
        if loaded is not None:
            loaded_info = {
                "path": loaded.path,
                "watches": loaded.watches.paths,
                "stale": loaded.is_stale(),
            }

        return {
            "settings": self.settings.to_dict(),
            "loaded": loaded_info,
            "found": found_info,
        }
