"""Minimal environment deltas: compute, encode, reverse, apply.

An :class:`EnvDiff` is what makes entering and leaving a directory
symmetric. For any snapshots ``a`` and ``b``::

    EnvDiff.compute(a, b).apply(a) == b
    EnvDiff.compute(a, b).reverse().apply(b) == a

The encoded form is a single token stored in ``DIRENV_DIFF`` so that the
next, completely fresh, invocation can undo the change.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any, NamedTuple

from pydirenv.codec import CodecError, marshal, unmarshal
from pydirenv.env import Env
from pydirenv.errors import DiffDecodeError

__all__ = [
    "Change",
    "EnvDiff",
    "IGNORED_KEYS",
    "IGNORED_PREFIXES",
    "is_ignored_key",
]


# Variables a shell maintains on its own. They are never part of a script's
# effect and are kept out of diffs shown to the shell.
IGNORED_KEYS = frozenset(
    {
        "DIRENV_CONFIG",
        "DIRENV_BASH",
        "DIRENV_DEBUG",
        "DIRENV_IN_ENVRC",
        "DIRENV_LOG_FORMAT",
        "DIRENV_LOG_LEVEL",
        "DIRENV_WARN_TIMEOUT",
        "COMP_WORDBREAKS",
        "PS1",
        "OLDPWD",
        "PWD",
        "SHELL",
        "SHELLOPTS",
        "SHLVL",
        "_",
    }
)

IGNORED_PREFIXES = ("__fish", "BASH_FUNC_")


def is_ignored_key(key: str) -> bool:
    return key in IGNORED_KEYS or key.startswith(IGNORED_PREFIXES)


class Change(NamedTuple):
    """One variable's transition. ``None`` means the variable is unset."""

    old: str | None
    new: str | None

    @property
    def is_addition(self) -> bool:
        return self.old is None and self.new is not None

    @property
    def is_removal(self) -> bool:
        return self.old is not None and self.new is None

    @property
    def is_modification(self) -> bool:
        return self.old is not None and self.new is not None


@dataclass(frozen=True)
class EnvDiff:
    """Mapping of variable name to :class:`Change`.

    No-op entries (``old == new``) are rejected at construction, so every
    stored entry is a real change.

    Attributes:
        changes: Variable name -> (old, new).
    """

    changes: Mapping[str, Change] = field(default_factory=dict)

    def __post_init__(self) -> None:
        normalized: dict[str, Change] = {}
        for key, change in self.changes.items():
            change = Change(*change)
            if change.old == change.new:
                raise ValueError(f"no-op change for {key!r}")
            normalized[key] = change
        object.__setattr__(self, "changes", normalized)

    # =========================================================================
    # Construction
    # =========================================================================

    @classmethod
    def compute(cls, before: Mapping[str, str], after: Mapping[str, str]) -> EnvDiff:
        """Diff two snapshots, keeping only keys whose value differs."""
        changes: dict[str, Change] = {}
        for key in before.keys() | after.keys():
            old = before.get(key)
            new = after.get(key)
            if old != new:
                changes[key] = Change(old, new)
        return cls(dict(sorted(changes.items())))

    @classmethod
    def from_prev_next(cls, prev: Mapping[str, str], next_: Mapping[str, str]) -> EnvDiff:
        """Build from the two halves of the encoded form.

        ``prev`` holds old values of modified or removed keys, ``next_`` holds
        new values of modified or added keys.
        """
        changes = {}
        for key in prev.keys() | next_.keys():
            changes[key] = Change(prev.get(key), next_.get(key))
        return cls(dict(sorted(changes.items())))

    # =========================================================================
    # Views
    # =========================================================================

    @property
    def prev(self) -> dict[str, str]:
        return {k: c.old for k, c in self.changes.items() if c.old is not None}

    @property
    def next(self) -> dict[str, str]:
        return {k: c.new for k, c in self.changes.items() if c.new is not None}

    @property
    def added(self) -> dict[str, str]:
        return {k: c.new for k, c in self.changes.items() if c.is_addition}  # type: ignore[misc]

    @property
    def removed(self) -> dict[str, str]:
        return {k: c.old for k, c in self.changes.items() if c.is_removal}  # type: ignore[misc]

    @property
    def changed(self) -> dict[str, tuple[str, str]]:
        return {
            k: (c.old, c.new)  # type: ignore[misc]
            for k, c in self.changes.items()
            if c.is_modification
        }

    @property
    def is_empty(self) -> bool:
        return not self.changes

    def __bool__(self) -> bool:
        return bool(self.changes)

    def __len__(self) -> int:
        return len(self.changes)

    def __iter__(self) -> Iterator[str]:
        return iter(self.changes)

    def __contains__(self, key: object) -> bool:
        return key in self.changes

    def __getitem__(self, key: str) -> Change:
        return self.changes[key]

    def summary(self) -> str:
        """Short ``+added -removed ~changed`` listing for status output."""
        if not self.changes:
            return "No changes"
        parts = []
        for key, change in self.changes.items():
            if change.is_addition:
                parts.append(f"+{key}")
            elif change.is_removal:
                parts.append(f"-{key}")
            else:
                parts.append(f"~{key}")
        return " ".join(parts)

    # =========================================================================
    # Transformations
    # =========================================================================

    def reverse(self) -> EnvDiff:
        """Swap old and new for every entry."""
        return EnvDiff({k: Change(c.new, c.old) for k, c in self.changes.items()})

    def apply(self, env: Mapping[str, str]) -> Env:
        """Return ``env`` with this diff applied. Never fails.

        Removing a variable that is already absent is a no-op. Keys not in
        the diff pass through unchanged.
        """
        data = dict(env)
        for key, change in self.changes.items():
            if change.new is None:
                data.pop(key, None)
            else:
                data[key] = change.new
        return Env(data)

    def filter_ignored(self) -> EnvDiff:
        """Drop entries for shell-maintained variables."""
        return EnvDiff({k: c for k, c in self.changes.items() if not is_ignored_key(k)})

    # =========================================================================
    # Serialization
    # =========================================================================

    def to_dict(self) -> dict[str, Any]:
        return {"p": self.prev, "n": self.next}

    def encode(self) -> str:
        """Serialize to a single shell-safe token."""
        return marshal(self.to_dict())

    @classmethod
    def decode(cls, token: str) -> EnvDiff:
        """Inverse of :meth:`encode`.

        Raises:
            DiffDecodeError: If the token is malformed in any way. A partial
                diff is never returned.
        """
        try:
            data = unmarshal(token)
        except CodecError as e:
            raise DiffDecodeError(f"invalid diff: {e}", token=token) from e

        if not isinstance(data, dict) or set(data) != {"p", "n"}:
            raise DiffDecodeError("invalid diff: expected keys 'p' and 'n'", token=token)

        prev, next_ = data["p"], data["n"]
        for half in (prev, next_):
            if not isinstance(half, dict) or not all(
                isinstance(k, str) and isinstance(v, str) for k, v in half.items()
            ):
                raise DiffDecodeError("invalid diff: values must be strings", token=token)

        try:
            return cls.from_prev_next(prev, next_)
        except ValueError as e:
            raise DiffDecodeError(f"invalid diff: {e}", token=token) from e
