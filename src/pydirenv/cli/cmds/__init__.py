from .shell_cmds import register as register_shell
from .status_cmds import register as register_status
from .trust_cmds import register as register_trust

__all__ = [
    "register_shell",
    "register_status",
    "register_trust",
]
