"""Directory scripts ("RC" files): locating, identifying and loading them."""

from __future__ import annotations

import os
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from pydirenv.diff import EnvDiff
from pydirenv.env import RC_FILENAME, Env
from pydirenv.errors import RCNotFoundError, RCNotTrustedError, WatchDecodeError
from pydirenv.executor import ScriptExecutor
from pydirenv.logging import get_logger
from pydirenv.trust import TrustDecision, TrustReason, TrustStore, Whitelist, file_signature
from pydirenv.watch import WatchSet

logger = get_logger("rc")

__all__ = ["RC", "LoadResult", "iter_ancestors", "find_nearest"]

DEFAULT_NAMES: tuple[str, ...] = (RC_FILENAME,)


def iter_ancestors(start_dir: str | Path) -> Iterator[str]:
    """Yield ``start_dir`` and each parent up to and including the root.

    Finite (bounded by path depth) and restartable: every call returns a
    fresh iterator.
    """
    current = os.path.abspath(start_dir)
    while True:
        yield current
        parent = os.path.dirname(current)
        if parent == current:
            return
        current = parent


def find_nearest(start_dir: str | Path, names: Sequence[str] = DEFAULT_NAMES) -> RC | None:
    """Closest script at or above ``start_dir``; None if the root is reached.

    Within one directory, ``names`` is checked in order.
    """
    for directory in iter_ancestors(start_dir):
        for name in names:
            candidate = os.path.join(directory, name)
            if os.path.isfile(candidate):
                logger.debug("found script", path=candidate, start=str(start_dir))
                return RC(candidate)
    return None


@dataclass(frozen=True)
class LoadResult:
    """What a successful load produced.

    Attributes:
        env: Snapshot after the script ran.
        diff: ``EnvDiff.compute(previous_env, env)``.
        watches: Files the loaded state depends on.
        decision: The trust decision that let the script run.
    """

    env: Env
    diff: EnvDiff
    watches: WatchSet
    decision: TrustDecision


@dataclass
class RC:
    """A directory script and the files its loaded state depends on.

    Attributes:
        path: Absolute path of the script file.
        watches: Watch set recorded at load time (empty until loaded or
            rebuilt from recorded state).
    """

    path: str
    watches: WatchSet = field(default_factory=WatchSet)

    def __post_init__(self) -> None:
        self.path = os.path.abspath(self.path)

    # =========================================================================
    # Construction
    # =========================================================================

    @classmethod
    def from_path(cls, path: str | Path) -> RC:
        """Handle for an explicit script path.

        Raises:
            RCNotFoundError: If ``path`` is not an existing file.
        """
        path = os.path.abspath(path)
        if not os.path.isfile(path):
            raise RCNotFoundError(path)
        return cls(path)

    @classmethod
    def from_recorded_state(cls, path: str | Path, watch_data: str) -> RC:
        """Rebuild the active handle from ``DIRENV_WATCHES``.

        An unreadable watch set yields an empty one, which never matches a
        freshly computed set, so the script is simply reloaded.
        """
        watches = WatchSet()
        if watch_data:
            try:
                watches = WatchSet.unmarshal(watch_data)
            except WatchDecodeError as e:
                logger.warning("discarding corrupt watch set", path=str(path), error=e.message)
        return cls(str(path), watches)

    # =========================================================================
    # Identity
    # =========================================================================

    @property
    def dir(self) -> str:
        return os.path.dirname(self.path)

    def signature(self) -> str:
        """Content signature of the script file."""
        try:
            return file_signature(self.path)
        except FileNotFoundError as e:
            raise RCNotFoundError(self.path) from e

    def same(self, other: RC | None) -> bool:
        """True if ``other`` names the same script file.

        Whether the content is still the same instance is answered by
        :meth:`is_stale` on the recorded handle.
        """
        return other is not None and other.path == self.path

    def is_stale(self) -> bool:
        """True if any watched file changed since the watch set was recorded.

        A stale script is reloaded, which re-runs the trust check even when
        the script's own content is unchanged.
        """
        if not self.watches:
            return True
        return not self.watches.check()

    def base_watches(self, trust_store: TrustStore) -> WatchSet:
        """Script file, its approval record and the sources that record pins."""
        watches = WatchSet()
        watches.update(self.path)
        watches.update(str(trust_store.record_path(self.path)))
        record = trust_store.get(self.path)
        if record is not None:
            watches.update_all(list(record.sources))
        return watches

    # =========================================================================
    # Trust and load
    # =========================================================================

    def trust(self, trust_store: TrustStore, whitelist: Whitelist | None = None) -> TrustDecision:
        return trust_store.is_allowed(self.path, self.signature(), whitelist)

    def load(
        self,
        previous_env: Env,
        trust_store: TrustStore,
        whitelist: Whitelist | None,
        executor: ScriptExecutor,
    ) -> LoadResult:
        """Run the script on top of ``previous_env``.

        ``previous_env`` is never modified. On any failure nothing is
        returned, so no partial effect can be applied. ``self.watches`` is
        updated even when the script is refused, so a later approval or a
        fix to a sourced file is noticed as a change.

        After a run allowed by an explicit approval, the files it sourced
        are pinned into the approval record: editing any of them later makes
        the approval stale.

        Raises:
            RCNotFoundError: The script disappeared.
            RCNotTrustedError: Unapproved, or the approved script or one of
                its sources has changed.
            RCExecutionError: The script ran and failed.
        """
        signature = self.signature()
        self.watches = self.base_watches(trust_store)

        decision = trust_store.is_allowed(self.path, signature, whitelist)
        if not decision.trusted:
            logger.info("script not trusted", path=self.path, reason=decision.reason.value)
            raise RCNotTrustedError(self.path, decision.reason.value)

        result = executor.execute(self.path, previous_env)
        if decision.reason is TrustReason.EXPLICITLY_APPROVED:
            trust_store.pin_sources(self.path, result.watched)

        watches = self.base_watches(trust_store)
        watches.update_all(list(result.watched))
        self.watches = watches

        diff = EnvDiff.compute(previous_env, result.env)
        logger.info("script loaded", path=self.path, changes=diff.summary())
        return LoadResult(env=result.env, diff=diff, watches=watches, decision=decision)
