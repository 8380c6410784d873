"""Fan planned checkout instances out over a bounded worker pool.

Each instance is an independent unit of work: create its worktree, assemble
the prompt, start or drive the agent, and report a single `InstanceResult`.
A failing unit never affects its siblings.
"""

from __future__ import annotations

import threading
from collections import Counter
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from loguru import logger

from .agent import AgentRunner, SubprocessAgentRunner, iterate_until_complete
from .config import Autom8Config, load_template
from .constants import AGENT_LOG_FILE, MODE_DETACHED, MODE_ITERATIVE, TASK_STATUS_IN_PROGRESS
from .git_coordinator import GitCoordinator, get_git_coordinator
from .git_utils import _ensure_state_dir_excluded, _git_worktree_add, _output
from .liveness import LivenessTracker
from .models import InstanceResult, PlannedInstance
from .planner import BranchPlan, DependencyGraph
from .prompts import build_task_prompt
from .store import Autom8Container


@dataclass
class ImplementReport:
    plan: BranchPlan
    results: list[InstanceResult] = field(default_factory=list)

    def counts(self) -> dict[str, int]:
        return dict(Counter(result.kind for result in self.results))

    @property
    def failed(self) -> list[InstanceResult]:
        return [result for result in self.results if not result.ok]


class WorktreeOrchestrator:
    def __init__(
        self,
        container: Autom8Container,
        config: Autom8Config,
        *,
        liveness: Optional[LivenessTracker] = None,
        runner: Optional[AgentRunner] = None,
        git: Optional[GitCoordinator] = None,
    ) -> None:
        self.container = container
        self.config = config
        self.liveness = liveness or LivenessTracker(container.pids)
        self.runner = runner or SubprocessAgentRunner(config.agent_command)
        self.git = git or get_git_coordinator()
        self._branch_ready: dict[str, threading.Event] = {}

    def implement(
        self,
        instances: Optional[int] = None,
        *,
        target_id: Optional[str] = None,
        mode: str = MODE_DETACHED,
        max_iterations: Optional[int] = None,
        on_result: Optional[Callable[[InstanceResult], None]] = None,
    ) -> ImplementReport:
        """Plan and run every checkout instance for the pending tasks.

        Args:
            instances: Branching factor; defaults to the configured value.
            target_id: Restrict the run to one task.
            mode: `detached` or `iterative`. Iterative dependents start after
                their parent instance finishes.
            max_iterations: Iteration cap for iterative mode.
            on_result: Called with each result as it arrives.

        Returns:
            The plan together with results in arrival order.
        """
        if mode not in {MODE_DETACHED, MODE_ITERATIVE}:
            raise ValueError(f"Unsupported mode '{mode}'")
        n = instances if instances is not None else self.config.instances
        plan = DependencyGraph(self.container.tasks.list()).plan(n, target_id=target_id)
        report = ImplementReport(plan=plan)
        if plan.is_empty():
            logger.info("No pending tasks to implement")
            return report

        # Status is persisted before any worktree exists.
        self.container.tasks.advance([task.id for task in plan.tasks], TASK_STATUS_IN_PROGRESS)
        self.container.worktrees_dir.mkdir(parents=True, exist_ok=True)
        _ensure_state_dir_excluded(self.container.project_dir)

        # Dependent instances wait until the parent branch they root on exists.
        # In iterative mode they wait for the parent run to finish instead, so
        # they branch from its committed work.
        self._branch_ready = {
            planned.branch: threading.Event() for planned in plan.instances if planned.base_branch is None
        }
        template = load_template(self.container.project_dir, self.config)
        workers = max(1, self.config.max_workers)
        logger.info(
            "Implementing {} instance(s) for {} task(s) with {} worker(s) in {} mode",
            plan.total,
            len(plan.tasks),
            workers,
            mode,
        )

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="autom8-instance") as pool:
            futures: dict[Future[InstanceResult], PlannedInstance] = {
                pool.submit(self._run_guarded, planned, template, mode, max_iterations): planned
                for planned in plan.instances
            }
            for future in as_completed(futures):
                result = future.result()
                report.results.append(result)
                if on_result is not None:
                    on_result(result)

        logger.info("Implementation fan-out finished: {}", report.counts())
        return report

    def _run_guarded(
        self,
        planned: PlannedInstance,
        template: str,
        mode: str,
        max_iterations: Optional[int],
    ) -> InstanceResult:
        parent_ready = self._branch_ready.get(planned.base_branch or "")
        if parent_ready is not None:
            parent_ready.wait()
        try:
            return self.run_instance(planned, template=template, mode=mode, max_iterations=max_iterations)
        except Exception as exc:
            logger.exception("Unexpected error running instance {}", planned.name)
            return InstanceResult(
                name=planned.name,
                kind="failed",
                message=f"Unexpected error: {exc}",
                branch=planned.branch,
                base_branch=planned.base_branch,
            )
        finally:
            self._mark_ready(planned.branch)

    def _mark_ready(self, branch: str) -> None:
        event = self._branch_ready.get(branch)
        if event is not None:
            event.set()

    def run_instance(
        self,
        planned: PlannedInstance,
        *,
        template: str = "",
        mode: str = MODE_DETACHED,
        max_iterations: Optional[int] = None,
    ) -> InstanceResult:
        """Create one worktree and start (or drive) the agent inside it."""
        name = planned.name
        worktree_path = self.container.worktree_path(name)
        base_info = planned.base_branch or "HEAD"

        if worktree_path.exists():
            return InstanceResult(
                name=name,
                kind="skipped",
                message=f"[skip] already exists at {worktree_path}",
                worktree_path=worktree_path,
                branch=planned.branch,
                base_branch=planned.base_branch,
            )

        created = self.git.execute(
            lambda: _git_worktree_add(
                self.container.project_dir,
                worktree_path,
                planned.branch,
                planned.base_branch,
            ),
            operation_name=f"worktree add {name}",
        )
        if created.returncode != 0:
            return InstanceResult(
                name=name,
                kind="failed",
                message=f"Error creating worktree: {_output(created)}",
                branch=planned.branch,
                base_branch=planned.base_branch,
            )
        logger.debug("Created worktree {} on {} (base {})", worktree_path, planned.branch, base_info)
        if mode != MODE_ITERATIVE:
            self._mark_ready(planned.branch)

        prompt = build_task_prompt(planned.task, template=template, iterative=mode == MODE_ITERATIVE)
        log_dir = self.container.logs_dir / name

        if mode == MODE_ITERATIVE:
            return self._run_iterative(planned, worktree_path, prompt, log_dir, max_iterations)

        try:
            pid = self.runner.spawn(prompt, worktree_path, log_dir / AGENT_LOG_FILE)
        except (OSError, ValueError) as exc:
            return InstanceResult(
                name=name,
                kind="failed",
                message=f"Error starting agent: {exc}",
                worktree_path=worktree_path,
                branch=planned.branch,
                base_branch=planned.base_branch,
            )
        self.liveness.record(name, pid)
        return InstanceResult(
            name=name,
            kind="started",
            message=f"[started] pid {pid} in {worktree_path} (branch: {planned.branch}, base: {base_info})",
            worktree_path=worktree_path,
            branch=planned.branch,
            base_branch=planned.base_branch,
            pid=pid,
        )

    def _run_iterative(
        self,
        planned: PlannedInstance,
        worktree_path: Path,
        prompt: str,
        log_dir: Path,
        max_iterations: Optional[int],
    ) -> InstanceResult:
        outcome = iterate_until_complete(
            self.runner,
            prompt=prompt,
            cwd=worktree_path,
            log_dir=log_dir,
            max_iterations=max_iterations,
        )
        if outcome.kind == "completed":
            message = f"[completed] after {outcome.iterations} iteration(s) (branch: {planned.branch})"
        elif outcome.kind == "stopped_at_limit":
            message = f"[stopped] iteration limit reached after {outcome.iterations} iteration(s) (branch: {planned.branch})"
        else:
            message = f"Agent failed: {outcome.reason}"
        return InstanceResult(
            name=planned.name,
            kind=outcome.kind if outcome.kind != "pending" else "failed",
            message=message,
            worktree_path=worktree_path,
            branch=planned.branch,
            base_branch=planned.base_branch,
            iterations=outcome.iterations,
        )
