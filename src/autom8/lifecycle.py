"""Accept a chosen instance or prune the leftovers of completed tasks."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from loguru import logger

from .constants import AUTO_COMMIT_MESSAGE, MERGE_MESSAGE_TEMPLATE, TASK_STATUS_COMPLETED
from .git_coordinator import GitCoordinator, get_git_coordinator
from .git_utils import (
    _git_branch_exists,
    _git_commit_all,
    _git_current_branch,
    _git_delete_branch,
    _git_has_changes,
    _git_merge,
    _git_merge_in_progress,
    _git_worktree_remove,
    _output,
)
from .liveness import LivenessTracker
from .models import Autom8Error, branch_for
from .planner import DependencyGraph
from .store import Autom8Container
from .worktrees import instances_for_task, owning_task_id


class LifecycleError(Autom8Error):
    pass


class InstanceNotFoundError(LifecycleError):
    def __init__(self, name: str) -> None:
        super().__init__(f"worktree '{name}' not found")
        self.name = name


class MergeConflictError(LifecycleError):
    def __init__(self, branch: str, output: str) -> None:
        super().__init__(
            f"merging branch '{branch}' failed:\n{output}\n"
            "Resolve conflicts manually, then run 'autom8 accept' again to clean up."
        )
        self.branch = branch
        self.output = output


@dataclass
class AcceptResult:
    name: str
    branch: str
    task_id: Optional[str] = None
    auto_committed: bool = False
    merge_output: str = ""
    warnings: list[str] = field(default_factory=list)


@dataclass
class PruneReport:
    tasks_pruned: list[str] = field(default_factory=list)
    instances_removed: list[str] = field(default_factory=list)
    failures: list[str] = field(default_factory=list)
    skipped_tasks: list[str] = field(default_factory=list)


class LifecycleManager:
    def __init__(
        self,
        container: Autom8Container,
        *,
        liveness: Optional[LivenessTracker] = None,
        git: Optional[GitCoordinator] = None,
    ) -> None:
        self.container = container
        self.liveness = liveness or LivenessTracker(container.pids)
        self.git = git or get_git_coordinator()

    def accept(self, name: str) -> AcceptResult:
        """Merge an instance branch into the current branch and clean it up.

        Args:
            name: Instance name, e.g. `task-123-1`.

        Returns:
            What happened, including non-fatal warnings.

        Raises:
            InstanceNotFoundError: No worktree exists for `name`.
            MergeConflictError: The merge failed; the worktree is left intact.
            LifecycleError: Any other step failed before cleanup finished.
        """
        project_dir = self.container.project_dir
        worktree_path = self.container.worktree_path(name)
        if not worktree_path.is_dir():
            raise InstanceNotFoundError(name)

        branch = _git_current_branch(worktree_path)
        if not branch:
            raise LifecycleError(f"could not determine branch name for worktree '{name}'")
        result = AcceptResult(name=name, branch=branch)

        if _git_has_changes(worktree_path):
            logger.info("Found uncommitted changes in {}, auto-committing", name)
            committed = _git_commit_all(worktree_path, AUTO_COMMIT_MESSAGE)
            if committed.returncode != 0:
                raise LifecycleError(f"auto-commit failed in '{name}':\n{_output(committed)}")
            result.auto_committed = True

        logger.info("Merging branch {} into current branch", branch)
        merged = self.git.execute(
            lambda: _git_merge(project_dir, branch, MERGE_MESSAGE_TEMPLATE.format(branch=branch)),
            operation_name=f"merge {branch}",
        )
        if merged.returncode != 0:
            output = _output(merged)
            if _git_merge_in_progress(project_dir):
                raise MergeConflictError(branch, output)
            raise LifecycleError(f"merging branch '{branch}' failed:\n{output}")
        result.merge_output = _output(merged)

        removed = self.git.execute(
            lambda: _git_worktree_remove(project_dir, worktree_path),
            operation_name=f"worktree remove {name}",
        )
        if removed.returncode != 0:
            raise LifecycleError(
                f"removing worktree '{name}' failed:\n{_output(removed)}\n"
                f"You may need to manually remove it with: git worktree remove {worktree_path}"
            )

        deleted = self.git.execute(
            lambda: _git_delete_branch(project_dir, branch),
            operation_name=f"branch -d {branch}",
        )
        if deleted.returncode != 0:
            warning = (
                f"could not delete branch '{branch}': {_output(deleted)}; "
                f"delete it manually with: git branch -D {branch}"
            )
            logger.warning(warning)
            result.warnings.append(warning)

        self.liveness.forget(name)

        task_id = owning_task_id(name, [task.id for task in self.container.tasks.list()])
        if task_id is None:
            result.warnings.append(f"no task owns worktree '{name}'; task status unchanged")
        else:
            self.container.tasks.advance([task_id], TASK_STATUS_COMPLETED)
            result.task_id = task_id
        logger.info("Accepted worktree {}", name)
        return result

    def prune(self) -> PruneReport:
        """Remove every worktree and branch of completed tasks, then drop the tasks.

        Completed tasks that still have unfinished dependents are kept, since the
        dependents branch from their instances.
        """
        report = PruneReport()
        project_dir = self.container.project_dir
        tasks = self.container.tasks.list()
        graph = DependencyGraph(tasks)
        completed = {task.id for task in tasks if task.status == TASK_STATUS_COMPLETED}

        prunable: list[str] = []
        for task in tasks:
            if task.id not in completed:
                continue
            blocking = [dep for dep in graph.dependents_of(task.id) if dep not in completed]
            if blocking:
                logger.info("Keeping completed task {}; unfinished dependents: {}", task.id, blocking)
                report.skipped_tasks.append(task.id)
                continue
            prunable.append(task.id)

        for task_id in prunable:
            for name in instances_for_task(self.container.worktrees_dir, task_id):
                worktree_path = self.container.worktree_path(name)
                branch = _git_current_branch(worktree_path) or branch_for(name)
                removed = self.git.execute(
                    lambda: _git_worktree_remove(project_dir, worktree_path, force=True),
                    operation_name=f"worktree remove {name}",
                )
                if removed.returncode != 0:
                    logger.warning("Failed to remove worktree {}: {}", name, _output(removed))
                    report.failures.append(name)
                    continue
                report.instances_removed.append(name)
                if _git_branch_exists(project_dir, branch):
                    deleted = self.git.execute(
                        lambda: _git_delete_branch(project_dir, branch, force=True),
                        operation_name=f"branch -D {branch}",
                    )
                    if deleted.returncode != 0:
                        logger.warning("Failed to delete branch {}: {}", branch, _output(deleted))
                self.liveness.forget(name)

        report.tasks_pruned = self.container.tasks.remove_completed(prunable)
        self.liveness.purge_stale()
        logger.info(
            "Pruned {} task(s), removed {} instance(s), {} failure(s)",
            len(report.tasks_pruned),
            len(report.instances_removed),
            len(report.failures),
        )
        return report
