"""Classify tasks by dependency and compute the exponential branching plan.

An independent task gets `N` instances (`-1 … -N`) rooted at the current
HEAD. A dependent task gets `N` children for every instance of its parent
(`-p-c`), each rooted on that parent instance's branch, so it produces `N²`
instances. Names and branches depend only on the task id and the suffix
lineage, so recomputing a plan is idempotent.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from loguru import logger

from .constants import TASK_STATUS_PENDING
from .models import Autom8Error, PlannedInstance, Task, branch_for, instance_name
from .store import TaskNotFoundError


class DependencyChainError(Autom8Error):
    """Raised for dependency chains longer than one hop."""


def default_suffixes(instances: int) -> list[str]:
    return [f"-{i}" for i in range(1, instances + 1)]


def independent(tasks: list[Task]) -> list[Task]:
    return [task for task in tasks if task.is_independent]


def dependent(tasks: list[Task]) -> list[Task]:
    return [task for task in tasks if not task.is_independent]


@dataclass
class BranchPlan:
    instances_per_task: int
    independent_tasks: list[Task] = field(default_factory=list)
    dependent_tasks: list[Task] = field(default_factory=list)
    instances: list[PlannedInstance] = field(default_factory=list)

    @property
    def independent_count(self) -> int:
        return len(self.independent_tasks) * self.instances_per_task

    @property
    def dependent_count(self) -> int:
        return len(self.dependent_tasks) * self.instances_per_task ** 2

    @property
    def total(self) -> int:
        return len(self.instances)

    @property
    def tasks(self) -> list[Task]:
        return self.independent_tasks + self.dependent_tasks

    def is_empty(self) -> bool:
        return not self.instances


class DependencyGraph:
    def __init__(self, tasks: list[Task]) -> None:
        self.tasks = list(tasks)
        self._by_id = {task.id: task for task in self.tasks}

    def get(self, task_id: str) -> Optional[Task]:
        return self._by_id.get(task_id)

    def dependents_of(self, task_id: str) -> list[str]:
        return [task.id for task in self.tasks if task.depends_on == task_id]

    def _check_parent(self, task: Task) -> Task:
        parent = self._by_id.get(task.depends_on or "")
        if parent is None:
            raise TaskNotFoundError(task.depends_on or "")
        if not parent.is_independent:
            raise DependencyChainError(
                f"task '{task.id}' depends on '{parent.id}', which itself depends on "
                f"'{parent.depends_on}'; dependency chains deeper than one level are not supported"
            )
        return parent

    def plan(self, instances: int, target_id: Optional[str] = None) -> BranchPlan:
        """Compute the checkout instances for pending tasks.

        Args:
            instances: Branching factor N; values below 1 are treated as 1.
            target_id: Restrict the plan to a single task.

        Returns:
            The branching plan. Independent instances come first, in task order.

        Raises:
            TaskNotFoundError: `target_id` or a parent task is unknown.
            DependencyChainError: A planned task depends on a dependent task.
        """
        n = max(1, int(instances))
        if target_id is not None:
            target = self._by_id.get(target_id)
            if target is None:
                raise TaskNotFoundError(target_id)
            candidates = [target]
        else:
            candidates = self.tasks
        pending = [task for task in candidates if task.status == TASK_STATUS_PENDING]

        plan = BranchPlan(
            instances_per_task=n,
            independent_tasks=independent(pending),
            dependent_tasks=dependent(pending),
        )

        planned_suffixes: dict[str, list[str]] = {}
        for task in plan.independent_tasks:
            suffixes = default_suffixes(n)
            planned_suffixes[task.id] = suffixes
            plan.instances.extend(PlannedInstance(task=task, suffix=suffix) for suffix in suffixes)

        for task in plan.dependent_tasks:
            parent = self._check_parent(task)
            parent_suffixes = planned_suffixes.get(parent.id)
            if parent_suffixes is None:
                # Parent was implemented in an earlier run; assume it used the same N.
                logger.debug("Parent {} not planned in this run; using default suffixes", parent.id)
                parent_suffixes = default_suffixes(n)
            for parent_suffix in parent_suffixes:
                base = branch_for(instance_name(parent.id, parent_suffix))
                for child in range(1, n + 1):
                    plan.instances.append(
                        PlannedInstance(task=task, suffix=f"{parent_suffix}-{child}", base_branch=base)
                    )

        return plan
