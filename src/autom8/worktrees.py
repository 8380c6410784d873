"""Inspect checkout instances under `.autom8/worktrees/`."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Literal, Optional

from .git_utils import _git_commits_ahead, _git_current_branch, _git_has_changes
from .liveness import LivenessTracker, process_mentions_path

InstanceState = Literal["running", "modified", "committed", "idle"]


@dataclass(frozen=True)
class InstanceStatus:
    name: str
    path: Path
    branch: Optional[str]
    has_changes: bool
    commits_ahead: int
    running: bool

    @property
    def state(self) -> InstanceState:
        if self.running:
            return "running"
        if self.has_changes:
            return "modified"
        if self.commits_ahead > 0:
            return "committed"
        return "idle"

    @property
    def can_accept(self) -> bool:
        return not self.running and (self.commits_ahead > 0 or self.has_changes)


def instance_names(worktrees_dir: Path) -> list[str]:
    if not worktrees_dir.is_dir():
        return []
    return sorted(child.name for child in worktrees_dir.iterdir() if child.is_dir())


def instances_for_task(worktrees_dir: Path, task_id: str) -> list[str]:
    prefix = f"{task_id}-"
    return [name for name in instance_names(worktrees_dir) if name.startswith(prefix)]


def owning_task_id(name: str, task_ids: Iterable[str]) -> Optional[str]:
    """Return the task id an instance name belongs to (longest matching prefix)."""
    matches = [task_id for task_id in task_ids if name.startswith(f"{task_id}-")]
    return max(matches, key=len) if matches else None


def inspect_instance(
    path: Path,
    liveness: LivenessTracker,
    baseline: str,
) -> InstanceStatus:
    name = path.name
    pid = liveness.pid_for(name)
    if pid is not None:
        running = liveness.is_running(name)
    else:
        running = process_mentions_path(path)
    return InstanceStatus(
        name=name,
        path=path,
        branch=_git_current_branch(path),
        has_changes=_git_has_changes(path),
        commits_ahead=_git_commits_ahead(path, baseline),
        running=running,
    )


def list_instances(
    worktrees_dir: Path,
    liveness: LivenessTracker,
    baseline: str,
) -> list[InstanceStatus]:
    return [inspect_instance(worktrees_dir / name, liveness, baseline) for name in instance_names(worktrees_dir)]
