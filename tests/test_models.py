"""Tests for the task record and instance value types."""

from __future__ import annotations

import pytest

from autom8.models import (
    AgentOutcome,
    InstanceResult,
    PlannedInstance,
    StatusTransitionError,
    Task,
    branch_for,
    instance_name,
)


class TestTask:
    def test_default_values(self) -> None:
        t = Task(prompt="Add login")
        assert t.id.startswith("task-")
        assert t.status == "pending"
        assert t.verification_criteria == []
        assert t.depends_on is None
        assert t.winner is None
        assert t.is_independent

    def test_ids_strictly_increase(self) -> None:
        ids = [Task().id for _ in range(50)]
        stamps = [int(i.split("-", 1)[1]) for i in ids]
        assert stamps == sorted(stamps)
        assert len(set(ids)) == 50

    def test_advance_is_monotonic(self) -> None:
        t = Task(prompt="x")
        assert t.advance("in-progress") is True
        assert t.advance("in-progress") is False
        assert t.advance("completed") is True
        with pytest.raises(StatusTransitionError):
            t.advance("pending")
        assert t.status == "completed"

    def test_advance_can_skip_forward(self) -> None:
        t = Task(prompt="x")
        assert t.advance("completed") is True

    def test_advance_rejects_unknown_status(self) -> None:
        with pytest.raises(StatusTransitionError, match="Unknown task status"):
            Task(prompt="x").advance("done")

    def test_dict_round_trip_preserves_fields(self) -> None:
        t = Task(id="task-1", prompt="p", verification_criteria=["a", "b"], depends_on="task-0")
        t.winner = "task-1-2"
        restored = Task.from_dict(t.to_dict())
        assert restored == t

    def test_from_dict_tolerates_missing_and_bad_fields(self) -> None:
        t = Task.from_dict({"id": "task-9", "status": "weird", "verification_criteria": "nope"})
        assert t.status == "pending"
        assert t.verification_criteria == []
        assert t.prompt == ""
        assert t.created_at


class TestPlannedInstance:
    def test_names_and_branches(self) -> None:
        task = Task(id="task-7", prompt="x")
        planned = PlannedInstance(task=task, suffix="-2-3", base_branch="autom8/task-6-2")
        assert planned.name == "task-7-2-3"
        assert planned.branch == "autom8/task-7-2-3"
        assert planned.lineage == (2, 3)

    def test_helpers(self) -> None:
        assert instance_name("task-1", "-1") == "task-1-1"
        assert branch_for("task-1-1") == "autom8/task-1-1"


def test_agent_outcome_tags() -> None:
    assert not AgentOutcome.pending().is_done
    done = AgentOutcome.completed(3)
    assert done.is_done and done.kind == "completed" and done.iterations == 3
    failed = AgentOutcome.failed("boom", 1)
    assert failed.reason == "boom"
    assert AgentOutcome.stopped_at_limit(5).kind == "stopped_at_limit"


def test_instance_result_str_and_ok() -> None:
    ok = InstanceResult(name="task-1-1", kind="started", message="[started] pid 1")
    bad = InstanceResult(name="task-1-2", kind="failed", message="Error creating worktree: x")
    assert str(ok) == "[task-1-1] [started] pid 1"
    assert ok.ok
    assert not bad.ok
