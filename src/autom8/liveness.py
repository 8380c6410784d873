"""Track agent process ids so detached work can be reported as still running."""

from __future__ import annotations

import os
import shutil
import subprocess
from pathlib import Path
from typing import Optional

from loguru import logger

from .store import PidStore


def _reap_if_exited(pid: int) -> bool:
    """Reap `pid` if it is an exited child of this process (a zombie still answers signal 0)."""
    if not hasattr(os, "WNOHANG"):
        return False
    try:
        reaped, _ = os.waitpid(pid, os.WNOHANG)
    except OSError:
        return False
    return reaped == pid


def pid_is_alive(pid: Optional[int]) -> bool:
    """Probe a process with signal 0 without affecting it."""
    if not pid or pid <= 0:
        return False
    if _reap_if_exited(pid):
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # The process exists but belongs to another user.
        return True
    except OSError:
        return False
    return True


def process_mentions_path(path: Path) -> bool:
    """Return True if any process command line references `path` (via pgrep)."""
    if shutil.which("pgrep") is None:
        return False
    result = subprocess.run(
        ["pgrep", "-f", str(path)],
        capture_output=True,
        text=True,
        check=False,
    )
    return result.returncode == 0


class LivenessTracker:
    """Best-effort `instance name -> pid` table.

    A crashed process leaves a stale entry that probes as not running.
    """

    def __init__(self, pids: PidStore) -> None:
        self._pids = pids

    def record(self, name: str, pid: int) -> None:
        self._pids.set(name, pid)
        logger.debug("Recorded pid {} for {}", pid, name)

    def forget(self, *names: str) -> list[str]:
        return self._pids.remove(names)

    def pid_for(self, name: str) -> Optional[int]:
        return self._pids.all().get(name)

    def is_running(self, name: str) -> bool:
        return pid_is_alive(self.pid_for(name))

    def running_names(self) -> list[str]:
        return sorted(name for name, pid in self._pids.all().items() if pid_is_alive(pid))

    def purge_stale(self) -> list[str]:
        stale = [name for name, pid in self._pids.all().items() if not pid_is_alive(pid)]
        if stale:
            self._pids.remove(stale)
            logger.info("Dropped {} stale liveness entr(y/ies)", len(stale))
        return sorted(stale)
