__version__ = "0.4.0"

from pydirenv.config import Settings, load_settings
from pydirenv.diff import Change, EnvDiff
from pydirenv.env import Env

# Errors
from pydirenv.errors import (
    ConfigurationError,
    DiffDecodeError,
    DirenvError,
    RCError,
    RCExecutionError,
    RCNotFoundError,
    RCNotTrustedError,
    WatchDecodeError,
)
from pydirenv.executor import BashExecutor, DotenvExecutor, ExecutionResult, ScriptExecutor
from pydirenv.logging import configure_logging, get_logger
from pydirenv.orchestrator import EnterResult, ExportResult, Orchestrator
from pydirenv.rc import RC, find_nearest
from pydirenv.shells import get_shell
from pydirenv.trust import TrustDecision, TrustReason, TrustStore, Whitelist
from pydirenv.watch import WatchSet

__all__ = [
    "__version__",
    # Core
    "Env",
    "EnvDiff",
    "Change",
    "RC",
    "find_nearest",
    "TrustStore",
    "TrustDecision",
    "TrustReason",
    "Whitelist",
    "WatchSet",
    "Orchestrator",
    "EnterResult",
    "ExportResult",
    # Execution
    "ScriptExecutor",
    "ExecutionResult",
    "BashExecutor",
    "DotenvExecutor",
    # Settings
    "Settings",
    "load_settings",
    # Shells
    "get_shell",
    # Errors
    "DirenvError",
    "ConfigurationError",
    "RCError",
    "RCNotFoundError",
    "RCNotTrustedError",
    "RCExecutionError",
    "DiffDecodeError",
    "WatchDecodeError",
    # Logging
    "configure_logging",
    "get_logger",
]
