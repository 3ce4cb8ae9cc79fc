"""Wiring shared by the CLI commands."""

from __future__ import annotations

import os
from pathlib import Path

from pydirenv.config import Settings, load_settings
from pydirenv.env import Env
from pydirenv.errors import RCNotFoundError
from pydirenv.orchestrator import Orchestrator
from pydirenv.rc import RC, find_nearest


def current_env() -> Env:
    return Env.from_os()


def load_cli_settings(env: Env | None = None) -> Settings:
    return load_settings(env if env is not None else current_env())


def build_orchestrator(env: Env | None = None) -> Orchestrator:
    env = env if env is not None else current_env()
    return Orchestrator(load_settings(env), env)


def resolve_script(settings: Settings, path: str | None) -> RC:
    """Script named by ``path``, or the nearest one above the working directory.

    A directory argument selects the first script name present in it.

    Raises:
        RCNotFoundError: Nothing to act on.
    """
    if path is None:
        rc = find_nearest(settings.work_dir, settings.script_names)
        if rc is None:
            raise RCNotFoundError(os.path.join(settings.work_dir, settings.script_names[0]))
        return rc

    target = Path(path).expanduser()
    if target.is_dir():
        for name in settings.script_names:
            if (target / name).is_file():
                return RC.from_path(target / name)
        return RC.from_path(target / settings.script_names[0])
    return RC.from_path(target)
