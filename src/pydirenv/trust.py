"""Trust gate for directory scripts.

A script may run only if one of these holds:

1. its path is whitelisted exactly by the administrator;
2. its path lives under a whitelisted prefix;
3. the user approved it and neither it nor any file it sources has changed
   since.

Approvals are content-bound: each record stores the script's signature at
approval time, plus the signatures of the files an approved run sourced
("sources"). A silent edit to any of them turns the approval stale rather
than riding on it.

Records live one per file under ``<data_dir>/allow``, named by the SHA-256
of the script's resolved path, and are written atomically so concurrent
approvals from different shells never corrupt each other.
"""

from __future__ import annotations

import hashlib
import json
import os
import tempfile
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from pydirenv.env import DOTENV_FILENAME, RC_FILENAME
from pydirenv.logging import get_logger

logger = get_logger("trust")

__all__ = [
    "TrustReason",
    "TrustDecision",
    "Whitelist",
    "ApprovalRecord",
    "TrustStore",
    "file_signature",
    "source_signature",
    "source_signatures",
    "path_key",
]


# =============================================================================
# Signatures
# =============================================================================


def file_signature(path: str | Path) -> str:
    """Content signature of a script: ``sha256:<hex digest>``."""
    hasher = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            hasher.update(chunk)
    return f"sha256:{hasher.hexdigest()}"


MISSING_SIGNATURE = "missing"


def source_signature(path: str | Path) -> str:
    """Signature of a sourced file; a missing file has a fixed marker."""
    try:
        return file_signature(path)
    except FileNotFoundError:
        return MISSING_SIGNATURE
    except OSError as e:
        return f"unreadable:{e.errno}"


def source_signatures(paths: Iterable[str]) -> dict[str, str]:
    return {os.path.abspath(p): source_signature(p) for p in sorted(set(paths))}


def path_key(path: str | Path) -> str:
    """Record key for a script: SHA-256 of its resolved path."""
    resolved = os.path.realpath(path)
    return hashlib.sha256(resolved.encode("utf-8")).hexdigest()


# =============================================================================
# Decisions
# =============================================================================


class TrustReason(str, Enum):
    """Why a script was (or was not) trusted."""

    WHITELISTED_EXACT = "whitelisted-exact"
    WHITELISTED_PREFIX = "whitelisted-prefix"
    EXPLICITLY_APPROVED = "explicitly-approved"
    STALE_APPROVAL = "stale-approval"
    UNAPPROVED = "unapproved"


_TRUSTED_REASONS = frozenset(
    {
        TrustReason.WHITELISTED_EXACT,
        TrustReason.WHITELISTED_PREFIX,
        TrustReason.EXPLICITLY_APPROVED,
    }
)


@dataclass(frozen=True, slots=True)
class TrustDecision:
    """Outcome of a trust check.

    ``trusted`` is derived from ``reason`` so the two can never disagree.
    """

    reason: TrustReason

    @property
    def trusted(self) -> bool:
        return self.reason in _TRUSTED_REASONS

    def __bool__(self) -> bool:
        return self.trusted

    def to_dict(self) -> dict[str, Any]:
        return {"trusted": self.trusted, "reason": self.reason.value}


# =============================================================================
# Whitelist
# =============================================================================


def _normalize_exact(path: str) -> str:
    path = os.path.abspath(os.path.expanduser(path))
    if os.path.basename(path) not in (RC_FILENAME, DOTENV_FILENAME):
        path = os.path.join(path, RC_FILENAME)
    return path


def _normalize_prefix(path: str) -> str:
    path = os.path.abspath(os.path.expanduser(path))
    return path.rstrip(os.sep) or os.sep


@dataclass(frozen=True)
class Whitelist:
    """Administrator-declared trust.

    Exact entries name a script (``.envrc`` or ``.env``); any other path is
    taken as a directory and gets ``/.envrc`` appended. Prefix entries name
    a directory tree and match on whole path components only: ``/home/x``
    covers ``/home/x/p/.envrc`` but not ``/home/xy/.envrc``.
    """

    exact: frozenset[str] = field(default_factory=frozenset)
    prefix: tuple[str, ...] = ()

    @classmethod
    def from_lists(cls, exact: list[str] | None = None, prefix: list[str] | None = None) -> Whitelist:
        return cls(
            exact=frozenset(_normalize_exact(p) for p in exact or []),
            prefix=tuple(_normalize_prefix(p) for p in prefix or []),
        )

    def match(self, script_path: str | Path) -> TrustReason | None:
        """Return the whitelist reason covering ``script_path``, if any."""
        candidates = {os.path.abspath(script_path), os.path.realpath(script_path)}

        if any(c in self.exact for c in candidates):
            return TrustReason.WHITELISTED_EXACT

        for prefix in self.prefix:
            base = prefix if prefix.endswith(os.sep) else prefix + os.sep
            if any(c.startswith(base) for c in candidates):
                return TrustReason.WHITELISTED_PREFIX
        return None

    def __bool__(self) -> bool:
        return bool(self.exact or self.prefix)


# =============================================================================
# Persisted approvals
# =============================================================================


@dataclass(frozen=True)
class ApprovalRecord:
    """One persisted approval.

    Attributes:
        path: Resolved script path.
        signature: Script signature at approval time.
        approved_at: ISO timestamp of the approval.
        sources: Sourced file path -> signature, pinned by trusted runs.
    """

    path: str
    signature: str
    approved_at: str
    sources: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "signature": self.signature,
            "sources": dict(self.sources),
            "approved_at": self.approved_at,
        }

    def changed_sources(self) -> list[str]:
        """Sourced files whose content differs from the recorded one."""
        return [p for p, sig in self.sources.items() if source_signature(p) != sig]

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ApprovalRecord:
        return cls(
            path=str(data["path"]),
            signature=str(data["signature"]),
            approved_at=str(data.get("approved_at", "")),
            sources={str(k): str(v) for k, v in dict(data.get("sources") or {}).items()},
        )


class TrustStore:
    """Persisted per-script approvals plus the whitelist check.

    Example:
        >>> store = TrustStore(settings.allow_dir)
        >>> store.approve("/project/.envrc", file_signature("/project/.envrc"))
        >>> store.is_allowed("/project/.envrc", sig, Whitelist()).trusted
        True
    """

    def __init__(self, allow_dir: str | Path) -> None:
        self._allow_dir = Path(allow_dir)

    @property
    def allow_dir(self) -> Path:
        return self._allow_dir

    def record_path(self, script_path: str | Path) -> Path:
        """File holding the approval for ``script_path`` (may not exist)."""
        return self._allow_dir / path_key(script_path)

    def get(self, script_path: str | Path) -> ApprovalRecord | None:
        """Load the approval record, or None if absent or unreadable."""
        record_file = self.record_path(script_path)
        try:
            data = json.loads(record_file.read_text(encoding="utf-8"))
            return ApprovalRecord.from_dict(data)
        except FileNotFoundError:
            return None
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning("ignoring unreadable approval record", record=str(record_file), error=str(e))
            return None

    def is_allowed(
        self,
        script_path: str | Path,
        signature: str,
        whitelist: Whitelist | None = None,
    ) -> TrustDecision:
        """Decide whether ``script_path`` with ``signature`` may run.

        The whitelist is consulted first and is independent of content.
        Otherwise the persisted approval must exist, carry the same
        signature, and every source it pinned must still have its recorded
        content.
        """
        if whitelist:
            reason = whitelist.match(script_path)
            if reason is not None:
                logger.debug("script whitelisted", path=str(script_path), reason=reason.value)
                return TrustDecision(reason)

        record = self.get(script_path)
        if record is None:
            return TrustDecision(TrustReason.UNAPPROVED)
        if record.signature != signature:
            logger.info("approval is stale", path=str(script_path))
            return TrustDecision(TrustReason.STALE_APPROVAL)
        changed = record.changed_sources()
        if changed:
            logger.info("approval is stale", path=str(script_path), changed=changed)
            return TrustDecision(TrustReason.STALE_APPROVAL)
        return TrustDecision(TrustReason.EXPLICITLY_APPROVED)

    def approve(
        self,
        script_path: str | Path,
        signature: str,
        sources: Iterable[str] | None = None,
    ) -> Path:
        """Persist an approval for exactly this content.

        Args:
            script_path: The script to approve.
            signature: Its current signature.
            sources: Sourced files to pin now. None keeps the paths of an
                existing record and signs their current content.

        Returns:
            Path of the record file.
        """
        if sources is None:
            previous = self.get(script_path)
            sources = previous.sources if previous is not None else ()
        record = ApprovalRecord(
            path=os.path.realpath(script_path),
            signature=signature,
            approved_at=datetime.now(timezone.utc).isoformat(),
            sources=source_signatures(sources),
        )
        target = self._write(script_path, record)
        logger.info("script approved", path=record.path, sources=len(record.sources))
        return target

    def pin_sources(self, script_path: str | Path, paths: Iterable[str]) -> bool:
        """Bind the approval of ``script_path`` to the files a run sourced.

        Only called after a trusted run, so every pinned file either was
        pinned before with the same content or is seen for the first time.
        The record is rewritten only when the pinned set changes.

        Returns:
            True if the record was updated.
        """
        record = self.get(script_path)
        if record is None:
            return False
        script = os.path.realpath(script_path)
        sources = source_signatures(p for p in paths if os.path.realpath(p) != script)
        if sources == record.sources:
            return False
        self._write(script_path, replace(record, sources=sources))
        logger.debug("sources pinned", path=record.path, sources=sorted(sources))
        return True

    def _write(self, script_path: str | Path, record: ApprovalRecord) -> Path:
        """Write ``record`` atomically: temp file in the same directory, then ``os.replace``."""
        target = self.record_path(script_path)
        self._allow_dir.mkdir(parents=True, exist_ok=True)

        fd, tmp_path = tempfile.mkstemp(dir=self._allow_dir, prefix=f".{target.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(record.to_dict(), f, indent=2)
            os.replace(tmp_path, target)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise
        return target

    def revoke(self, script_path: str | Path) -> bool:
        """Delete the approval. Idempotent.

        Returns:
            True if a record was deleted, False if none existed.
        """
        try:
            self.record_path(script_path).unlink()
        except FileNotFoundError:
            return False
        logger.info("approval revoked", path=os.path.realpath(script_path))
        return True
