"""Serialize git metadata mutations across orchestrator threads.

`git worktree add/remove` and branch updates all write under `.git/`; running
several of them at once from the same process races on git's own lock files.
"""

from __future__ import annotations

import threading
from typing import Callable, TypeVar

from loguru import logger

T = TypeVar("T")


class GitCoordinator:
    """Run git operations one at a time within this process."""

    def __init__(self) -> None:
        self._git_lock = threading.RLock()

    def execute(self, operation: Callable[[], T], operation_name: str = "git operation") -> T:
        """Execute a git operation while holding the coordinator lock.

        Args:
            operation: Function that performs the git operation.
            operation_name: Name of the operation for logging.

        Returns:
            Result of the operation.
        """
        thread_id = threading.current_thread().name
        logger.debug("Thread {} waiting for git lock ({})", thread_id, operation_name)
        with self._git_lock:
            logger.debug("Thread {} acquired git lock ({})", thread_id, operation_name)
            try:
                return operation()
            finally:
                logger.debug("Thread {} releasing git lock ({})", thread_id, operation_name)


_git_coordinator = GitCoordinator()


def get_git_coordinator() -> GitCoordinator:
    return _git_coordinator
