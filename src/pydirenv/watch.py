"""Watch sets: the files a loaded script depends on.

A watch set records, for each file, its modification time and whether it
existed. It is serialized into ``DIRENV_WATCHES`` so the next invocation
can tell whether anything the active script depends on changed, without
re-running it.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any

from pydirenv.codec import CodecError, marshal, unmarshal
from pydirenv.errors import WatchDecodeError
from pydirenv.logging import get_logger

logger = get_logger("watch")

__all__ = ["FileTime", "WatchSet"]


@dataclass(frozen=True)
class FileTime:
    """Modification time of one watched file at record time.

    Attributes:
        path: Absolute file path.
        mtime_ns: ``st_mtime_ns`` when recorded (0 when missing).
        exists: Whether the file existed.
    """

    path: str
    mtime_ns: int
    exists: bool

    @classmethod
    def stat(cls, path: str) -> FileTime:
        try:
            st = os.stat(path)
        except OSError:
            return cls(path=path, mtime_ns=0, exists=False)
        return cls(path=path, mtime_ns=st.st_mtime_ns, exists=True)

    def check(self) -> bool:
        """True when the live file still matches this record."""
        return FileTime.stat(self.path) == self

    def to_dict(self) -> dict[str, Any]:
        return {"path": self.path, "mtime": self.mtime_ns, "exists": self.exists}


@dataclass
class WatchSet:
    """Ordered set of :class:`FileTime` records keyed by path."""

    entries: dict[str, FileTime] = field(default_factory=dict)

    def update(self, path: str) -> None:
        """Record (or refresh) the current state of ``path``."""
        path = os.path.abspath(path)
        self.entries[path] = FileTime.stat(path)

    def update_all(self, paths: list[str]) -> None:
        for path in paths:
            self.update(path)

    @property
    def paths(self) -> list[str]:
        return list(self.entries)

    def changed(self) -> list[str]:
        """Paths whose live state diverges from the recorded one."""
        return [path for path, entry in self.entries.items() if not entry.check()]

    def check(self) -> bool:
        """True when nothing changed."""
        stale = self.changed()
        if stale:
            logger.debug("watched files changed", paths=stale)
        return not stale

    def __len__(self) -> int:
        return len(self.entries)

    def __contains__(self, path: object) -> bool:
        return path in self.entries

    # Serialization

    def marshal(self) -> str:
        return marshal([entry.to_dict() for entry in self.entries.values()])

    @classmethod
    def unmarshal(cls, token: str) -> WatchSet:
        """Rebuild from :meth:`marshal` output.

        Raises:
            WatchDecodeError: On any malformed token.
        """
        try:
            data = unmarshal(token)
        except CodecError as e:
            raise WatchDecodeError(f"invalid watch set: {e}", token=token) from e

        if not isinstance(data, list):
            raise WatchDecodeError("invalid watch set: expected a list", token=token)

        entries: dict[str, FileTime] = {}
        for item in data:
            if not (
                isinstance(item, dict)
                and isinstance(item.get("path"), str)
                and isinstance(item.get("mtime"), int)
                and isinstance(item.get("exists"), bool)
            ):
                raise WatchDecodeError("invalid watch set entry", token=token)
            entries[item["path"]] = FileTime(item["path"], item["mtime"], item["exists"])
        return cls(entries)
