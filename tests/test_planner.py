"""Tests for dependency classification and the exponential branching plan."""

from __future__ import annotations

import pytest

from autom8.models import Task
from autom8.planner import DependencyChainError, DependencyGraph, default_suffixes, dependent, independent
from autom8.store import TaskNotFoundError


def _task(task_id: str, depends_on: str | None = None, status: str = "pending") -> Task:
    return Task(id=task_id, prompt=f"do {task_id}", depends_on=depends_on, status=status)  # type: ignore[arg-type]


def test_classification() -> None:
    a, b, c = _task("task-a"), _task("task-b", "task-a"), _task("task-c")
    assert independent([a, b, c]) == [a, c]
    assert dependent([a, b, c]) == [b]


def test_independent_tasks_get_n_instances_each() -> None:
    plan = DependencyGraph([_task("task-a"), _task("task-b")]).plan(3)

    assert [p.name for p in plan.instances] == [
        "task-a-1",
        "task-a-2",
        "task-a-3",
        "task-b-1",
        "task-b-2",
        "task-b-3",
    ]
    assert all(p.base_branch is None for p in plan.instances)
    assert plan.independent_count == 6
    assert plan.dependent_count == 0
    assert plan.total == 6


def test_dependent_task_gets_n_squared_instances_rooted_on_parent_branches() -> None:
    plan = DependencyGraph([_task("task-a"), _task("task-b", "task-a")]).plan(2)

    got = [(p.name, p.branch, p.base_branch) for p in plan.instances]
    assert got == [
        ("task-a-1", "autom8/task-a-1", None),
        ("task-a-2", "autom8/task-a-2", None),
        ("task-b-1-1", "autom8/task-b-1-1", "autom8/task-a-1"),
        ("task-b-1-2", "autom8/task-b-1-2", "autom8/task-a-1"),
        ("task-b-2-1", "autom8/task-b-2-1", "autom8/task-a-2"),
        ("task-b-2-2", "autom8/task-b-2-2", "autom8/task-a-2"),
    ]
    assert plan.independent_count == 2
    assert plan.dependent_count == 4


def test_counts_for_mixed_graph() -> None:
    tasks = [_task("task-a"), _task("task-b"), _task("task-c", "task-a"), _task("task-d", "task-b")]
    plan = DependencyGraph(tasks).plan(3)
    assert plan.independent_count == 6
    assert plan.dependent_count == 18
    assert plan.total == 24


def test_plan_is_deterministic() -> None:
    tasks = [_task("task-a"), _task("task-b", "task-a")]
    first = [(p.name, p.base_branch) for p in DependencyGraph(tasks).plan(3).instances]
    second = [(p.name, p.base_branch) for p in DependencyGraph(tasks).plan(3).instances]
    assert first == second


def test_only_pending_tasks_are_planned() -> None:
    tasks = [_task("task-a", status="in-progress"), _task("task-b", "task-a"), _task("task-c", status="completed")]
    plan = DependencyGraph(tasks).plan(2)
    # Parent was implemented earlier; children still root on its default suffixes.
    assert [(p.name, p.base_branch) for p in plan.instances] == [
        ("task-b-1-1", "autom8/task-a-1"),
        ("task-b-1-2", "autom8/task-a-1"),
        ("task-b-2-1", "autom8/task-a-2"),
        ("task-b-2-2", "autom8/task-a-2"),
    ]


def test_target_restricts_plan() -> None:
    tasks = [_task("task-a"), _task("task-b")]
    plan = DependencyGraph(tasks).plan(2, target_id="task-b")
    assert [p.name for p in plan.instances] == ["task-b-1", "task-b-2"]


def test_unknown_target_raises() -> None:
    with pytest.raises(TaskNotFoundError):
        DependencyGraph([_task("task-a")]).plan(1, target_id="task-zzz")


def test_missing_parent_raises() -> None:
    with pytest.raises(TaskNotFoundError):
        DependencyGraph([_task("task-b", "task-gone")]).plan(1)


def test_chains_deeper_than_one_hop_are_rejected() -> None:
    tasks = [_task("task-a"), _task("task-b", "task-a"), _task("task-c", "task-b")]
    with pytest.raises(DependencyChainError, match="task-c"):
        DependencyGraph(tasks).plan(2)


def test_branching_factor_is_clamped_to_one() -> None:
    plan = DependencyGraph([_task("task-a")]).plan(0)
    assert plan.instances_per_task == 1
    assert [p.name for p in plan.instances] == ["task-a-1"]


def test_empty_plan() -> None:
    plan = DependencyGraph([]).plan(3)
    assert plan.is_empty()
    assert plan.tasks == []


def test_default_suffixes() -> None:
    assert default_suffixes(3) == ["-1", "-2", "-3"]


def test_dependents_of() -> None:
    graph = DependencyGraph([_task("task-a"), _task("task-b", "task-a"), _task("task-c", "task-a")])
    assert graph.dependents_of("task-a") == ["task-b", "task-c"]
    assert graph.get("task-b").depends_on == "task-a"
