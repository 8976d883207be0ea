"""
countryblock.defense.shell
~~~~~~~~~~~~~~~~~~~~~~~~~~

Thin wrapper around :pyfunc:`subprocess.run` used by every firewall
client.  Commands never go through a shell and never raise on a non-zero
exit; callers inspect :class:`CommandResult` and decide.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from countryblock.errors import TargetUnavailable

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CommandResult:
    args: tuple
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def describe(self) -> str:
        detail = (self.stderr or self.stdout).strip()
        return f"`{' '.join(self.args)}` exited {self.returncode}" + (f": {detail}" if detail else "")


Runner = Callable[..., CommandResult]


def run_command(args: Sequence[str], input_: Optional[str] = None) -> CommandResult:
    """
    Run *args* and capture its output.

    Parameters
    ----------
    args:
        Binary followed by its arguments.
    input_:
        Text fed to *stdin* (e.g. an ``ipset restore`` script).
    """
    cmd: List[str] = [str(a) for a in args]
    logger.debug("Executing: %s", " ".join(cmd))
    try:
        proc = subprocess.run(
            cmd,
            input=input_,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            check=False,
        )
    except FileNotFoundError as exc:
        raise TargetUnavailable(f"{cmd[0]} not installed", operation=cmd[0]) from exc
    except PermissionError as exc:
        raise TargetUnavailable(f"{cmd[0]} is not executable: {exc}", operation=cmd[0]) from exc
    return CommandResult(tuple(cmd), proc.returncode, proc.stdout or "", proc.stderr or "")


def require_commands(names: Iterable[str]) -> Dict[str, str]:
    """Return ``{name: path}`` for every command, or raise :class:`TargetUnavailable`."""
    found: Dict[str, str] = {}
    missing: List[str] = []
    for name in names:
        path = shutil.which(name)
        if path:
            logger.info("Found %s", path)
            found[name] = path
        else:
            missing.append(name)
    if missing:
        raise TargetUnavailable(
            f"{', '.join(missing)} not installed, try: sudo apt-get install {' '.join(missing)}",
            operation="check_command",
        )
    return found
