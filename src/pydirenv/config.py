"""Resolved settings.

Everything the core needs from the outside world (directories, the
whitelist, the interpreter, timeouts) is resolved once at startup into an
immutable :class:`Settings` and passed explicitly from there on.

Config file: ``<config_dir>/direnv.toml``, falling back to
``<config_dir>/config.toml``::

    # Keys may sit at the top level (legacy) or under [global].
    strict_env = true

    [global]
    warn_timeout = "10s"
    load_dotenv = true

    [whitelist]
    prefix = ["~/work"]
    exact = ["~/dotfiles", "/srv/app/.envrc"]

When a key is set both at the top level and under ``[global]``, the
``[global]`` value wins. See :func:`merge_global_sections`.
"""

from __future__ import annotations

import os
import re
import shutil
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from pydirenv.env import (
    DIRENV_BASH,
    DIRENV_CONFIG,
    DIRENV_DIR,
    DIRENV_WARN_TIMEOUT,
    DOTENV_FILENAME,
    PENDING_MARKER,
    RC_FILENAME,
    Env,
)
from pydirenv.errors import ConfigurationError
from pydirenv.logging import get_logger
from pydirenv.trust import Whitelist

logger = get_logger("config")

__all__ = [
    "APP_NAME",
    "DEFAULT_WARN_TIMEOUT",
    "Settings",
    "TomlConfig",
    "TomlGlobal",
    "TomlWhitelist",
    "find_toml",
    "load_settings",
    "merge_global_sections",
    "parse_duration",
    "read_toml",
]

APP_NAME = "pydirenv"
DEFAULT_WARN_TIMEOUT = 5.0
TOML_NAMES = ("direnv.toml", "config.toml")


# =============================================================================
# Durations
# =============================================================================

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)")


def parse_duration(text: str) -> float:
    """Parse a Go-style duration (``"5s"``, ``"1m30s"``, ``"250ms"``) to seconds.

    Raises:
        ValueError: If ``text`` is not a valid duration.
    """
    s = text.strip()
    if not s:
        raise ValueError("empty duration")

    sign = 1.0
    if s[0] in "+-":
        sign = -1.0 if s[0] == "-" else 1.0
        s = s[1:]
    if s == "0":
        return 0.0

    total = 0.0
    pos = 0
    while pos < len(s):
        match = _DURATION_PART.match(s, pos)
        if not match:
            raise ValueError(f"invalid duration {text!r}")
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    if pos == 0:
        raise ValueError(f"invalid duration {text!r}")
    return sign * total


# =============================================================================
# TOML schema
# =============================================================================


class TomlGlobal(BaseModel):
    """Keys accepted at the top level or under ``[global]``."""

    model_config = ConfigDict(extra="forbid")

    bash_path: str | None = None
    disable_stdin: bool = False
    strict_env: bool = False
    load_dotenv: bool = False
    warn_timeout: float | None = None

    @field_validator("warn_timeout", mode="before")
    @classmethod
    def _parse_timeout(cls, value: Any) -> Any:
        if isinstance(value, str):
            return parse_duration(value)
        return value


class TomlWhitelist(BaseModel):
    model_config = ConfigDict(extra="forbid")

    prefix: list[str] = Field(default_factory=list)
    exact: list[str] = Field(default_factory=list)


class TomlConfig(BaseModel):
    """Validated config file, after :func:`merge_global_sections`."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    global_: TomlGlobal = Field(default_factory=TomlGlobal, alias="global")
    whitelist: TomlWhitelist = Field(default_factory=TomlWhitelist)


def merge_global_sections(raw: Mapping[str, Any]) -> dict[str, Any]:
    """Fold legacy top-level keys and ``[global]`` into one section.

    Two passes with a fixed precedence, independent of where keys appear in
    the file:

    1. global keys found at the top level;
    2. keys from the ``[global]`` table, overriding pass 1.

    Other top-level tables (``[whitelist]``) pass through untouched.
    """
    global_keys = set(TomlGlobal.model_fields)

    section = raw.get("global", {})
    if not isinstance(section, Mapping):
        raise ConfigurationError("[global] must be a table", config_key="global")

    merged: dict[str, Any] = {k: v for k, v in raw.items() if k in global_keys}
    overridden = sorted(set(merged) & set(section))
    if overridden:
        logger.debug("[global] overrides top-level keys", keys=overridden)
    merged.update(section)

    result = {k: v for k, v in raw.items() if k not in global_keys and k != "global"}
    result["global"] = merged
    return result


def find_toml(config_dir: str | Path) -> Path | None:
    for name in TOML_NAMES:
        candidate = Path(config_dir) / name
        if candidate.is_file():
            return candidate
    return None


def read_toml(path: str | Path) -> TomlConfig:
    """Parse and validate a config file.

    Raises:
        ConfigurationError: On unreadable, malformed or invalid files.
    """
    path = Path(path)
    try:
        with open(path, "rb") as f:
            raw = tomllib.load(f)
    except OSError as e:
        raise ConfigurationError(f"failed to read {path}: {e}", config_path=str(path)) from e
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"failed to parse {path}: {e}", config_path=str(path)) from e

    try:
        return TomlConfig.model_validate(merge_global_sections(raw))
    except ValidationError as e:
        first = e.errors()[0]
        key = ".".join(str(part) for part in first.get("loc", ()))
        raise ConfigurationError(
            f"invalid config in {path}: {key}: {first.get('msg')}",
            config_key=key,
            config_path=str(path),
        ) from e


# =============================================================================
# Settings
# =============================================================================


@dataclass(frozen=True)
class Settings:
    """Immutable resolved configuration, built once per process.

    Attributes:
        work_dir: Directory the shell is in.
        config_dir: Where the TOML config lives.
        cache_dir: Scratch space.
        data_dir: Persistent state (approval records).
        toml_path: Config file that was read, if any.
        bash_path: Interpreter for ``.envrc`` scripts.
        disable_stdin: Run scripts with stdin closed.
        strict_env: Run scripts under ``set -euo pipefail``.
        load_dotenv: Also look for ``.env`` files.
        warn_timeout: Seconds before the slow-script notice.
        whitelist: Administrator trust.
        rc_dir: Directory of the currently recorded script ("" if none).
        self_path: Command the shell hook invokes.
    """

    work_dir: str
    config_dir: str
    cache_dir: str
    data_dir: str
    bash_path: str
    toml_path: str | None = None
    disable_stdin: bool = False
    strict_env: bool = False
    load_dotenv: bool = False
    warn_timeout: float = DEFAULT_WARN_TIMEOUT
    whitelist: Whitelist = field(default_factory=Whitelist)
    rc_dir: str = ""
    self_path: str = APP_NAME

    @property
    def allow_dir(self) -> Path:
        return Path(self.data_dir) / "allow"

    @property
    def script_names(self) -> tuple[str, ...]:
        if self.load_dotenv:
            return (RC_FILENAME, DOTENV_FILENAME)
        return (RC_FILENAME,)

    def to_dict(self) -> dict[str, Any]:
        return {
            "work_dir": self.work_dir,
            "config_dir": self.config_dir,
            "cache_dir": self.cache_dir,
            "data_dir": self.data_dir,
            "allow_dir": str(self.allow_dir),
            "toml_path": self.toml_path,
            "bash_path": self.bash_path,
            "disable_stdin": self.disable_stdin,
            "strict_env": self.strict_env,
            "load_dotenv": self.load_dotenv,
            "warn_timeout": self.warn_timeout,
            "whitelist": {
                "exact": sorted(self.whitelist.exact),
                "prefix": list(self.whitelist.prefix),
            },
            "rc_dir": self.rc_dir,
        }


def _xdg_dir(env: Mapping[str, str], var: str, fallback: str) -> str | None:
    base = env.get(var, "")
    if not base:
        home = env.get("HOME", "")
        if not home:
            return None
        base = os.path.join(home, fallback)
    return os.path.join(base, APP_NAME)


def load_settings(env: Mapping[str, str], work_dir: str | None = None) -> Settings:
    """Resolve settings from the environment and the config file.

    Args:
        env: The process environment.
        work_dir: Current directory (default: ``os.getcwd()``).

    Raises:
        ConfigurationError: When a required directory or the interpreter
            cannot be resolved, or the config file is invalid.
    """
    env = env if isinstance(env, Env) else Env(env)
    config_dir = env.get(DIRENV_CONFIG) or _xdg_dir(env, "XDG_CONFIG_HOME", ".config")
    if not config_dir:
        raise ConfigurationError(
            "couldn't find a configuration directory",
            hint=f"Set {DIRENV_CONFIG} or HOME",
        )

    if work_dir is None:
        try:
            work_dir = os.getcwd()
        except OSError as e:
            raise ConfigurationError(f"cannot determine working directory: {e}") from e

    toml_path = find_toml(config_dir)
    toml = read_toml(toml_path) if toml_path else TomlConfig()
    options = toml.global_

    warn_timeout = options.warn_timeout
    if warn_timeout is None:
        raw_timeout = env.fetch(DIRENV_WARN_TIMEOUT, "5s")
        try:
            warn_timeout = parse_duration(raw_timeout)
        except ValueError as e:
            logger.error(f"invalid {DIRENV_WARN_TIMEOUT}: {e}")
            warn_timeout = DEFAULT_WARN_TIMEOUT

    bash_path = options.bash_path or env.get(DIRENV_BASH) or shutil.which("bash", path=env.get("PATH"))
    if not bash_path:
        raise ConfigurationError(
            "can't find bash",
            config_key="bash_path",
            hint=f"Install bash or set {DIRENV_BASH}",
        )

    cache_dir = _xdg_dir(env, "XDG_CACHE_HOME", ".cache")
    if not cache_dir:
        raise ConfigurationError("couldn't find a cache directory", hint="Set XDG_CACHE_HOME or HOME")
    data_dir = _xdg_dir(env, "XDG_DATA_HOME", os.path.join(".local", "share"))
    if not data_dir:
        raise ConfigurationError("couldn't find a data directory", hint="Set XDG_DATA_HOME or HOME")

    rc_dir = env.get(DIRENV_DIR, "")
    if rc_dir.startswith(PENDING_MARKER):
        rc_dir = rc_dir[len(PENDING_MARKER) :]

    settings = Settings(
        work_dir=work_dir,
        config_dir=config_dir,
        cache_dir=cache_dir,
        data_dir=data_dir,
        toml_path=str(toml_path) if toml_path else None,
        bash_path=bash_path,
        disable_stdin=options.disable_stdin,
        strict_env=options.strict_env,
        load_dotenv=options.load_dotenv,
        warn_timeout=warn_timeout,
        whitelist=Whitelist.from_lists(toml.whitelist.exact, toml.whitelist.prefix),
        rc_dir=rc_dir,
        self_path=shutil.which(APP_NAME, path=env.get("PATH")) or APP_NAME,
    )
    logger.debug("settings resolved", config_dir=config_dir, toml=settings.toml_path)
    return settings
