"""Pick a winner among several finished instances of the same task.

The judging agent receives the task, its criteria and a size-capped diff per
candidate, and must answer with a `WINNER: <instance-name>` line. Parsing
never guesses: when no candidate can be identified the raw response is
handed back for manual resolution.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Literal, Optional, Protocol

from loguru import logger

from .agent import AgentRun, SubprocessAgentRunner
from .config import Autom8Config
from .constants import (
    VERDICT_KEYWORD,
    VERDICT_PROXIMITY_CHARS,
    VERDICT_PROXIMITY_WORDS,
)
from .git_utils import _git_diff_against
from .liveness import LivenessTracker
from .models import Autom8Error, Task
from .prompts import build_convergence_prompt, cap_diff
from .store import Autom8Container
from .worktrees import inspect_instance, instances_for_task

ConvergenceOutcome = Literal["winner", "wait", "insufficient", "no_verdict"]

_VERDICT_RE = re.compile(rf"{VERDICT_KEYWORD}\s*:\s*(?P<name>.+)$", re.IGNORECASE)
_EMPHASIS_CHARS = "*_`~"


class JudgeError(Autom8Error):
    pass


class Judge(Protocol):
    def run(self, prompt: str, cwd: Any, log_path: Any) -> AgentRun:
        ...


@dataclass
class ConvergenceResult:
    task_id: str
    outcome: ConvergenceOutcome
    candidates: list[str] = field(default_factory=list)
    winner: Optional[str] = None
    running: list[str] = field(default_factory=list)
    raw_response: str = ""
    truncated: list[str] = field(default_factory=list)

    @property
    def message(self) -> str:
        if self.outcome == "winner":
            return f"Winner for task '{self.task_id}': {self.winner}"
        if self.outcome == "wait":
            return f"Task '{self.task_id}' still has running instances: {', '.join(self.running)}; wait and retry"
        if self.outcome == "insufficient":
            return f"Task '{self.task_id}' needs at least two finished instances to converge (found {len(self.candidates)})"
        return f"Could not determine a winner for task '{self.task_id}'; review the judge response manually"


def unwrap_envelope(response: str) -> str:
    """Return the `result` field of a JSON envelope, or the response unchanged."""
    text = (response or "").strip()
    if not text.startswith("{"):
        return response or ""
    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        return response
    if isinstance(payload, dict) and isinstance(payload.get("result"), str):
        return payload["result"]
    return response


def _strip_emphasis(token: str) -> str:
    return token.strip().strip(_EMPHASIS_CHARS).strip()


def parse_verdict(response: str, candidates: list[str]) -> Optional[str]:
    """Extract the winning instance name from a judge response.

    Args:
        response: Raw judge output, optionally a JSON envelope with `result`.
        candidates: Valid instance names.

    Returns:
        The winning name, or None when no candidate can be identified.
    """
    text = unwrap_envelope(response)
    valid = set(candidates)

    for line in text.splitlines():
        cleaned = line.replace("**", "").replace("__", "")
        match = _VERDICT_RE.search(cleaned)
        if not match:
            continue
        tokens = match.group("name").split()
        if not tokens:
            continue
        name = _strip_emphasis(tokens[0]).rstrip(".,;:!)")
        name = _strip_emphasis(name)
        if name in valid:
            return name

    lowered = text.lower()
    for name in candidates:
        # A mention must stand alone: task-1-1 does not match inside task-1-10.
        pattern = re.compile(rf"(?<![\w-]){re.escape(name.lower())}(?![\w-])")
        for mention in pattern.finditer(lowered):
            lo = max(0, mention.start() - VERDICT_PROXIMITY_CHARS)
            hi = min(len(lowered), mention.end() + VERDICT_PROXIMITY_CHARS)
            window = lowered[lo:hi]
            if any(word in window for word in VERDICT_PROXIMITY_WORDS):
                return name
    return None


class ConvergenceSelector:
    def __init__(
        self,
        container: Autom8Container,
        config: Autom8Config,
        *,
        liveness: Optional[LivenessTracker] = None,
        judge: Optional[Judge] = None,
    ) -> None:
        self.container = container
        self.config = config
        self.liveness = liveness or LivenessTracker(container.pids)
        self.judge = judge or SubprocessAgentRunner(config.judge_command)

    def candidates(self, task: Task) -> list[str]:
        return instances_for_task(self.container.worktrees_dir, task.id)

    def converge(self, task_id: str) -> ConvergenceResult:
        """Judge the finished instances of `task_id` and record the winner."""
        task = self.container.tasks.require(task_id)
        names = self.candidates(task)
        result = ConvergenceResult(task_id=task.id, outcome="insufficient", candidates=names)
        if len(names) < 2:
            return result

        statuses = [
            inspect_instance(self.container.worktree_path(name), self.liveness, self.config.baseline_branch)
            for name in names
        ]
        result.running = [status.name for status in statuses if status.running]
        if result.running:
            result.outcome = "wait"
            return result

        diffs = []
        for name in names:
            diff = _git_diff_against(self.container.worktree_path(name), self.config.baseline_branch)
            capped = cap_diff(name, diff, self.config.diff_char_budget)
            if capped.truncated:
                result.truncated.append(name)
            diffs.append(capped)

        prompt = build_convergence_prompt(task, diffs)
        log_path = self.container.logs_dir / task.id / "convergence.log"
        logger.info("Asking judge to compare {} candidate(s) for {}", len(names), task.id)
        try:
            run = self.judge.run(prompt, self.container.project_dir, log_path)
        except (OSError, ValueError) as exc:
            raise JudgeError(f"Unable to run judge: {exc}") from exc
        result.raw_response = run.output
        if run.exit_code != 0:
            logger.warning("Judge exited with code {}", run.exit_code)

        winner = parse_verdict(run.output, names)
        if winner is None:
            result.outcome = "no_verdict"
            return result

        self.container.tasks.set_winner(task.id, winner)
        result.outcome = "winner"
        result.winner = winner
        logger.info("Recorded winner {} for task {}", winner, task.id)
        return result
