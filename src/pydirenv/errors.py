"""Error hierarchy for pydirenv.

Every error carries a human-readable message, optional structured details,
and an optional hint naming the action that resolves it. The CLI prints the
hint verbatim, so trust failures always tell the user how to approve.

Hierarchy:
    DirenvError
    ├── ConfigurationError      settings could not be resolved (fatal)
    ├── RCError
    │   ├── RCNotFoundError     explicit script path does not exist
    │   ├── RCNotTrustedError   script is unapproved or its approval is stale
    │   └── RCExecutionError    script ran and failed
    └── DiffDecodeError         recorded state is corrupt
        └── WatchDecodeError
"""

from __future__ import annotations

import logging
from typing import Any

__all__ = [
    "DirenvError",
    "ConfigurationError",
    "RCError",
    "RCNotFoundError",
    "RCNotTrustedError",
    "RCExecutionError",
    "DiffDecodeError",
    "WatchDecodeError",
    "log_exception",
]


def log_exception(
    logger: logging.Logger | Any,
    message: str,
    exc: BaseException,
    level: str = "warning",
    include_traceback: bool = True,
) -> None:
    """Log an exception with a consistent format.

    Args:
        logger: Logger to write to (stdlib or StructuredLogger).
        message: Context for the failure.
        exc: The exception that was raised.
        level: Log level name ("debug", "info", "warning", "error").
        include_traceback: Attach exc_info to the record.
    """
    log_fn = getattr(logger, level, logger.warning)
    text = f"{message}: {type(exc).__name__}: {exc}"
    if include_traceback:
        log_fn(text, exc_info=(type(exc), exc, exc.__traceback__))
    else:
        log_fn(text)


# =============================================================================
# Base
# =============================================================================


class DirenvError(Exception):
    """Base exception for all pydirenv errors.

    Attributes:
        message: Human-readable description.
        details: Structured context (paths, exit codes, ...).
        hint: Suggested remediation, shown to the user.
        docs_url: Optional link to documentation.
    """

    def __init__(
        self,
        message: str,
        *,
        details: dict[str, Any] | None = None,
        hint: str | None = None,
        docs_url: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.hint = hint
        self.docs_url = docs_url

    def __str__(self) -> str:
        parts = [self.message]
        if self.hint:
            parts.append(f"Hint: {self.hint}")
        if self.docs_url:
            parts.append(f"Docs: {self.docs_url}")
        return "\n".join(parts)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r})"


class ConfigurationError(DirenvError):
    """Settings could not be resolved at startup."""

    def __init__(
        self,
        message: str,
        *,
        config_key: str | None = None,
        config_path: str | None = None,
        hint: str | None = None,
    ) -> None:
        details: dict[str, Any] = {}
        if config_key:
            details["config_key"] = config_key
        if config_path:
            details["config_path"] = config_path
        super().__init__(message, details=details, hint=hint)
        self.config_key = config_key
        self.config_path = config_path


# =============================================================================
# Directory script errors
# =============================================================================


class RCError(DirenvError):
    """Base class for errors tied to a specific directory script."""

    def __init__(
        self,
        message: str,
        *,
        path: str | None = None,
        details: dict[str, Any] | None = None,
        hint: str | None = None,
    ) -> None:
        details = dict(details or {})
        if path:
            details["path"] = path
        super().__init__(message, details=details, hint=hint)
        self.path = path


class RCNotFoundError(RCError):
    """An explicitly requested script does not exist."""

    def __init__(self, path: str) -> None:
        super().__init__(f"{path}: no such file", path=path)


class RCNotTrustedError(RCError):
    """The script exists but may not run.

    Raised when the script has never been approved, or when it changed since
    it was approved. Never resolved implicitly: the user must allow it.
    """

    def __init__(self, path: str, reason: str = "unapproved") -> None:
        if reason == "stale-approval":
            message = f"{path} changed since it was allowed"
        else:
            message = f"{path} is blocked"
        super().__init__(
            message,
            path=path,
            details={"reason": reason},
            hint=f"Run `pydirenv allow {path}` to approve its content",
        )
        self.reason = reason


class RCExecutionError(RCError):
    """The script ran but did not complete successfully."""

    def __init__(
        self,
        path: str,
        *,
        exit_code: int | None = None,
        stderr: str = "",
        reason: str | None = None,
    ) -> None:
        if reason:
            message = f"failed to load {path}: {reason}"
        else:
            message = f"failed to load {path} (exit status {exit_code})"
        if stderr.strip():
            message = f"{message}\n{stderr.rstrip()}"
        super().__init__(
            message,
            path=path,
            details={"exit_code": exit_code},
        )
        self.exit_code = exit_code
        self.stderr = stderr


# =============================================================================
# Recorded state errors
# =============================================================================


class DiffDecodeError(DirenvError):
    """A serialized diff could not be decoded.

    Callers treat this as "no active diff" and let the next directory entry
    re-establish state.
    """

    def __init__(self, message: str, *, token: str | None = None) -> None:
        details: dict[str, Any] = {}
        if token is not None:
            details["token_length"] = len(token)
        super().__init__(message, details=details)


class WatchDecodeError(DiffDecodeError):
    """A serialized watch set could not be decoded."""
