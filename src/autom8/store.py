"""File-backed task and liveness storage under `.autom8/`."""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Any, Callable, Iterable, Optional, TypeVar

from loguru import logger

from .constants import (
    LOGS_DIR,
    PIDS_FILE,
    PIDS_LOCK_FILE,
    STATE_DIR_NAME,
    STORE_VERSION,
    TASK_STATUS_COMPLETED,
    TASKS_FILE,
    TASKS_LOCK_FILE,
    WORKTREES_DIR,
)
from .io_utils import FileLock, _atomic_write_yaml, _load_yaml_with_error
from .models import Autom8Error, Task

T = TypeVar("T")


class StoreError(Autom8Error):
    pass


class TaskNotFoundError(Autom8Error):
    def __init__(self, task_id: str) -> None:
        super().__init__(f"task '{task_id}' not found")
        self.task_id = task_id


class InvalidTaskError(Autom8Error):
    pass


class TaskHasDependentsError(Autom8Error):
    def __init__(self, task_id: str, dependents: list[str]) -> None:
        listing = "\n".join(f"  - {dep}" for dep in dependents)
        super().__init__(f"cannot delete task '{task_id}' because these tasks depend on it:\n{listing}")
        self.task_id = task_id
        self.dependents = dependents


class TaskStore:
    """Persist the ordered task list as YAML.

    Every read-modify-write cycle runs under an advisory file lock plus an
    in-process lock, so concurrent threads and processes serialize on it.
    """

    def __init__(self, path: Path, lock_path: Path) -> None:
        self._path = path
        self._lock = FileLock(lock_path)
        self._thread_lock = threading.RLock()

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> list[Task]:
        data, err = _load_yaml_with_error(self._path, {})
        if err:
            raise StoreError(f"Unable to read tasks: {err}")
        items = data.get("tasks", [])
        if not isinstance(items, list):
            raise StoreError(f"Unable to read tasks: {self._path.name}: 'tasks' must be a list")
        return [Task.from_dict(item) for item in items if isinstance(item, dict)]

    def _save(self, tasks: list[Task]) -> None:
        payload = {"version": STORE_VERSION, "tasks": [task.to_dict() for task in tasks]}
        _atomic_write_yaml(self._path, payload)

    def _mutate(self, fn: Callable[[list[Task]], T]) -> T:
        with self._thread_lock:
            with self._lock:
                tasks = self._load()
                result = fn(tasks)
                self._save(tasks)
                return result

    def list(self) -> list[Task]:
        with self._thread_lock:
            with self._lock:
                return self._load()

    def get(self, task_id: str) -> Optional[Task]:
        for task in self.list():
            if task.id == task_id:
                return task
        return None

    def require(self, task_id: str) -> Task:
        task = self.get(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    def add(
        self,
        prompt: str,
        criteria: Optional[Iterable[str]] = None,
        depends_on: Optional[str] = None,
    ) -> Task:
        """Create and persist a new pending task.

        Args:
            prompt: Task prompt text; must not be blank.
            criteria: Ordered verification criteria.
            depends_on: Optional id of an existing parent task.

        Returns:
            The created task.
        """
        if not prompt or not prompt.strip():
            raise InvalidTaskError("No prompt provided")
        depends_on = (depends_on or "").strip() or None
        task = Task(
            prompt=prompt,
            verification_criteria=[c for c in (criteria or []) if c and c.strip()],
            depends_on=depends_on,
        )

        def _add(tasks: list[Task]) -> Task:
            ids = {t.id for t in tasks}
            if depends_on is not None:
                if depends_on == task.id:
                    raise InvalidTaskError("A task cannot depend on itself")
                if depends_on not in ids:
                    raise InvalidTaskError(f"dependency task '{depends_on}' not found")
            if task.id in ids:
                raise InvalidTaskError(f"task id '{task.id}' already exists")
            tasks.append(task)
            return task

        created = self._mutate(_add)
        logger.info("Created task {} (depends_on={})", created.id, created.depends_on)
        return created

    def delete(self, task_id: str) -> Task:
        def _delete(tasks: list[Task]) -> Task:
            index = next((i for i, t in enumerate(tasks) if t.id == task_id), None)
            if index is None:
                raise TaskNotFoundError(task_id)
            dependents = [t.id for t in tasks if t.depends_on == task_id]
            if dependents:
                raise TaskHasDependentsError(task_id, dependents)
            return tasks.pop(index)

        removed = self._mutate(_delete)
        logger.info("Deleted task {}", task_id)
        return removed

    def advance(self, task_ids: Iterable[str], status: str) -> list[str]:
        """Move each task to `status` and return the ids that actually changed."""
        wanted = set(task_ids)

        def _advance(tasks: list[Task]) -> list[str]:
            changed: list[str] = []
            for task in tasks:
                if task.id in wanted and task.advance(status):
                    changed.append(task.id)
            return changed

        return self._mutate(_advance)

    def set_winner(self, task_id: str, winner: str) -> Task:
        def _set(tasks: list[Task]) -> Task:
            for task in tasks:
                if task.id == task_id:
                    task.winner = winner
                    return task
            raise TaskNotFoundError(task_id)

        return self._mutate(_set)

    def remove_completed(self, task_ids: Iterable[str]) -> list[str]:
        """Drop completed tasks named in `task_ids`; other statuses are kept."""
        wanted = set(task_ids)

        def _remove(tasks: list[Task]) -> list[str]:
            removed = [t.id for t in tasks if t.id in wanted and t.status == TASK_STATUS_COMPLETED]
            tasks[:] = [t for t in tasks if t.id not in removed]
            return removed

        return self._mutate(_remove)


class PidStore:
    """Persist the `instance name -> pid` liveness table as YAML."""

    def __init__(self, path: Path, lock_path: Path) -> None:
        self._path = path
        self._lock = FileLock(lock_path)
        self._thread_lock = threading.RLock()

    def _load(self) -> dict[str, int]:
        data, err = _load_yaml_with_error(self._path, {})
        if err:
            # The table is best-effort; a corrupt file reads as empty.
            logger.warning("Ignoring unreadable liveness table: {}", err)
            return {}
        raw = data.get("pids") or {}
        out: dict[str, int] = {}
        if isinstance(raw, dict):
            for name, pid in raw.items():
                if isinstance(pid, int) and not isinstance(pid, bool):
                    out[str(name)] = pid
        return out

    def _save(self, pids: dict[str, int]) -> None:
        payload: dict[str, Any] = {"version": STORE_VERSION, "pids": dict(sorted(pids.items()))}
        _atomic_write_yaml(self._path, payload)

    def all(self) -> dict[str, int]:
        with self._thread_lock:
            with self._lock:
                return self._load()

    def set(self, name: str, pid: int) -> None:
        with self._thread_lock:
            with self._lock:
                pids = self._load()
                pids[name] = pid
                self._save(pids)

    def remove(self, names: Iterable[str]) -> list[str]:
        wanted = set(names)
        with self._thread_lock:
            with self._lock:
                pids = self._load()
                removed = [name for name in pids if name in wanted]
                if removed:
                    for name in removed:
                        del pids[name]
                    self._save(pids)
                return removed


class Autom8Container:
    """Resolve the `.autom8/` state layout for a repository root."""

    def __init__(self, project_dir: Path) -> None:
        self.project_dir = project_dir.resolve()
        self.state_root = self.project_dir / STATE_DIR_NAME
        self.worktrees_dir = self.state_root / WORKTREES_DIR
        self.logs_dir = self.state_root / LOGS_DIR
        self.tasks = TaskStore(self.state_root / TASKS_FILE, self.state_root / TASKS_LOCK_FILE)
        self.pids = PidStore(self.state_root / PIDS_FILE, self.state_root / PIDS_LOCK_FILE)

    def worktree_path(self, name: str) -> Path:
        return self.worktrees_dir / name
