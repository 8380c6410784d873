"""Domain records shared across the planner, orchestrator and lifecycle code."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Literal, Optional

from .constants import (
    BRANCH_PREFIX,
    TASK_STATUS_ORDER,
    TASK_STATUS_PENDING,
)
from .utils import _now_iso, new_task_id

TaskStatus = Literal["pending", "in-progress", "completed"]
OutcomeKind = Literal["pending", "completed", "failed", "stopped_at_limit"]
InstanceResultKind = Literal["skipped", "started", "completed", "failed", "stopped_at_limit"]


class Autom8Error(RuntimeError):
    """Base class for errors surfaced to the command line as failures."""


class StatusTransitionError(Autom8Error):
    pass


@dataclass
class Task:
    id: str = field(default_factory=new_task_id)
    prompt: str = ""
    verification_criteria: list[str] = field(default_factory=list)
    depends_on: Optional[str] = None
    created_at: str = field(default_factory=_now_iso)
    status: TaskStatus = TASK_STATUS_PENDING
    winner: Optional[str] = None

    @property
    def is_independent(self) -> bool:
        return not self.depends_on

    def advance(self, status: str) -> bool:
        """Move the task forward to `status`.

        Returns True if the status changed. Raises `StatusTransitionError` for
        unknown statuses or attempts to move backwards.
        """
        if status not in TASK_STATUS_ORDER:
            raise StatusTransitionError(f"Unknown task status '{status}'")
        current = TASK_STATUS_ORDER.index(self.status) if self.status in TASK_STATUS_ORDER else 0
        target = TASK_STATUS_ORDER.index(status)
        if target < current:
            raise StatusTransitionError(
                f"Task '{self.id}' cannot move from '{self.status}' back to '{status}'"
            )
        if target == current:
            return False
        self.status = status  # type: ignore[assignment]
        return True

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Task":
        status = str(data.get("status") or TASK_STATUS_PENDING)
        if status not in TASK_STATUS_ORDER:
            status = TASK_STATUS_PENDING
        criteria = data.get("verification_criteria") or []
        return cls(
            id=str(data.get("id") or new_task_id()),
            prompt=str(data.get("prompt") or ""),
            verification_criteria=[str(item) for item in criteria] if isinstance(criteria, list) else [],
            depends_on=str(data["depends_on"]) if data.get("depends_on") else None,
            created_at=str(data.get("created_at") or _now_iso()),
            status=status,  # type: ignore[arg-type]
            winner=str(data["winner"]) if data.get("winner") else None,
        )


def instance_name(task_id: str, suffix: str) -> str:
    return f"{task_id}{suffix}"


def branch_for(name: str) -> str:
    return f"{BRANCH_PREFIX}{name}"


@dataclass(frozen=True)
class PlannedInstance:
    """One (task, suffix) pair of the branching plan."""

    task: Task
    suffix: str
    base_branch: Optional[str] = None

    @property
    def name(self) -> str:
        return instance_name(self.task.id, self.suffix)

    @property
    def branch(self) -> str:
        return branch_for(self.name)

    @property
    def lineage(self) -> tuple[int, ...]:
        return tuple(int(part) for part in self.suffix.strip("-").split("-") if part)


@dataclass(frozen=True)
class AgentOutcome:
    """Tagged result of driving an external agent."""

    kind: OutcomeKind
    iterations: int = 0
    reason: Optional[str] = None

    @classmethod
    def pending(cls) -> "AgentOutcome":
        return cls(kind="pending")

    @classmethod
    def completed(cls, iterations: int) -> "AgentOutcome":
        return cls(kind="completed", iterations=iterations)

    @classmethod
    def failed(cls, reason: str, iterations: int = 0) -> "AgentOutcome":
        return cls(kind="failed", iterations=iterations, reason=reason)

    @classmethod
    def stopped_at_limit(cls, iterations: int) -> "AgentOutcome":
        return cls(kind="stopped_at_limit", iterations=iterations)

    @property
    def is_done(self) -> bool:
        return self.kind != "pending"


@dataclass(frozen=True)
class InstanceResult:
    name: str
    kind: InstanceResultKind
    message: str
    worktree_path: Optional[Path] = None
    branch: Optional[str] = None
    base_branch: Optional[str] = None
    pid: Optional[int] = None
    iterations: int = 0

    @property
    def ok(self) -> bool:
        return self.kind != "failed"

    def __str__(self) -> str:
        return f"[{self.name}] {self.message}"

