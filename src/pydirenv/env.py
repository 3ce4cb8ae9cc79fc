"""Immutable environment snapshots and the state variables pydirenv owns."""

from __future__ import annotations

import os
from collections.abc import Iterator, Mapping

__all__ = [
    "Env",
    "DIRENV_DIR",
    "DIRENV_FILE",
    "DIRENV_WATCHES",
    "DIRENV_DIFF",
    "DIRENV_WARN_TIMEOUT",
    "DIRENV_BASH",
    "DIRENV_CONFIG",
    "DIRENV_IN_ENVRC",
    "STATE_VARS",
    "PENDING_MARKER",
    "RC_FILENAME",
    "DOTENV_FILENAME",
]

# =============================================================================
# Variable names
# =============================================================================

DIRENV_DIR = "DIRENV_DIR"
DIRENV_FILE = "DIRENV_FILE"
DIRENV_WATCHES = "DIRENV_WATCHES"
DIRENV_DIFF = "DIRENV_DIFF"
DIRENV_WARN_TIMEOUT = "DIRENV_WARN_TIMEOUT"
DIRENV_BASH = "DIRENV_BASH"
DIRENV_CONFIG = "DIRENV_CONFIG"
DIRENV_IN_ENVRC = "DIRENV_IN_ENVRC"

# Recorded between invocations; stripped when a script is unloaded.
STATE_VARS = frozenset({DIRENV_DIR, DIRENV_FILE, DIRENV_WATCHES, DIRENV_DIFF})

# Leading marker on DIRENV_DIR: the directory is recorded but its diff still
# has to be reverted before anything else is loaded.
PENDING_MARKER = "-"

# Script file names looked up in each directory.
RC_FILENAME = ".envrc"
DOTENV_FILENAME = ".env"


# =============================================================================
# Snapshot
# =============================================================================


class Env(Mapping[str, str]):
    """Immutable mapping of variable name to value.

    Every transformation returns a new Env; the receiver is never changed.

    Example:
        >>> env = Env({"PATH": "/usr/bin"})
        >>> env2 = env.set("FOO", "bar")
        >>> "FOO" in env, "FOO" in env2
        (False, True)
    """

    __slots__ = ("_data", "_hash")

    def __init__(self, data: Mapping[str, str] | None = None, **kwargs: str) -> None:
        merged = dict(data or {})
        merged.update(kwargs)
        for key, value in merged.items():
            if not isinstance(key, str) or not isinstance(value, str):
                raise TypeError(f"Env keys and values must be str, got {key!r}={value!r}")
        self._data: dict[str, str] = merged
        self._hash: int | None = None

    @classmethod
    def from_os(cls) -> Env:
        """Snapshot of the current process environment."""
        return cls(dict(os.environ))

    # Mapping protocol

    def __getitem__(self, key: str) -> str:
        return self._data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Env):
            return self._data == other._data
        if isinstance(other, Mapping):
            return self._data == dict(other)
        return NotImplemented

    def __hash__(self) -> int:
        if self._hash is None:
            self._hash = hash(frozenset(self._data.items()))
        return self._hash

    def __repr__(self) -> str:
        return f"Env({self._data!r})"

    # Copy-on-write transformations

    def copy(self) -> Env:
        return Env(self._data)

    def set(self, key: str, value: str) -> Env:
        data = dict(self._data)
        data[key] = value
        return Env(data)

    def update(self, values: Mapping[str, str]) -> Env:
        data = dict(self._data)
        data.update(values)
        return Env(data)

    def delete(self, *keys: str) -> Env:
        data = {k: v for k, v in self._data.items() if k not in keys}
        return Env(data)

    def fetch(self, key: str, default: str) -> str:
        """Value of ``key``, or ``default`` when unset or empty."""
        value = self._data.get(key, "")
        return value if value else default

    def without_state(self) -> Env:
        """This snapshot minus the variables pydirenv records between runs."""
        return self.delete(*STATE_VARS)

    def to_dict(self) -> dict[str, str]:
        return dict(self._data)
