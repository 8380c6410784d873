from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Optional

from loguru import logger
from rich.console import Console

from .config import Autom8Config, load_config
from .constants import MODE_DETACHED, MODE_ITERATIVE
from .convergence import ConvergenceSelector
from .display import (
    render_accept,
    render_plan,
    render_prune,
    render_result,
    render_status,
    render_tasks,
)
from .git_utils import _git_toplevel
from .lifecycle import LifecycleManager
from .liveness import LivenessTracker
from .models import Autom8Error
from .orchestrator import WorktreeOrchestrator
from .store import Autom8Container
from .worktrees import list_instances


class NotAGitRepositoryError(Autom8Error):
    pass


def _configure_logging(level: str = "INFO") -> None:
    """Configure loguru logger with the specified level."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{module}</cyan>:<cyan>{line}</cyan> - "
            "{message}"
        ),
    )


def _resolve_repo(project_dir: Optional[str]) -> Path:
    start = Path(project_dir).expanduser().resolve() if project_dir else Path.cwd().resolve()
    root = _git_toplevel(start)
    if root is None:
        raise NotAGitRepositoryError("must be run inside a git repository")
    return root


def _ctx(args: argparse.Namespace) -> tuple[Autom8Container, Autom8Config]:
    container = Autom8Container(_resolve_repo(args.project_dir))
    config, err = load_config(container.project_dir)
    if args.log_level is None:
        _configure_logging(config.log_level)
    if err:
        logger.warning("Ignoring invalid config: {}", err)
    return container, config


def _emit_json(console: Console, payload: dict[str, Any]) -> None:
    console.print_json(json.dumps(payload, default=str))


def _feature(args: argparse.Namespace, console: Console) -> int:
    container, _ = _ctx(args)
    task = container.tasks.add(args.prompt, args.criteria or [], args.depends_on)
    if args.json:
        _emit_json(console, {"task": task.to_dict()})
    else:
        console.print(f"Task saved with ID: {task.id}")
    return 0


def _list(args: argparse.Namespace, console: Console) -> int:
    container, _ = _ctx(args)
    tasks = container.tasks.list()
    if args.json:
        _emit_json(console, {"tasks": [task.to_dict() for task in tasks]})
    else:
        render_tasks(console, tasks)
    return 0


def _delete(args: argparse.Namespace, console: Console) -> int:
    container, _ = _ctx(args)
    container.tasks.delete(args.task_id)
    console.print(f"Task '{args.task_id}' deleted.")
    return 0


def _implement(args: argparse.Namespace, console: Console) -> int:
    container, config = _ctx(args)
    config = config.with_overrides(instances=args.instances, max_workers=args.workers)
    orchestrator = WorktreeOrchestrator(container, config)
    report = orchestrator.implement(
        target_id=args.task,
        mode=args.mode,
        max_iterations=args.max_iterations,
        on_result=None if args.json else (lambda result: render_result(console, result)),
    )
    if args.json:
        _emit_json(
            console,
            {
                "planned": [planned.name for planned in report.plan.instances],
                "results": [
                    {"name": r.name, "kind": r.kind, "message": r.message, "pid": r.pid}
                    for r in report.results
                ],
                "counts": report.counts(),
            },
        )
        return 1 if report.failed else 0
    if report.plan.is_empty():
        console.print("No pending tasks to implement.")
        return 0
    render_plan(console, report.plan)
    if args.mode == MODE_DETACHED:
        console.print("\nAll tasks started. Check worktrees for progress with 'autom8 status'.")
    return 1 if report.failed else 0


def _status(args: argparse.Namespace, console: Console) -> int:
    container, config = _ctx(args)
    statuses = list_instances(container.worktrees_dir, LivenessTracker(container.pids), config.baseline_branch)
    if args.json:
        _emit_json(
            console,
            {
                "worktrees": [
                    {
                        "name": s.name,
                        "path": str(s.path),
                        "branch": s.branch,
                        "state": s.state,
                        "commits_ahead": s.commits_ahead,
                        "has_changes": s.has_changes,
                    }
                    for s in statuses
                ]
            },
        )
    else:
        render_status(console, statuses)
    return 0


def _converge(args: argparse.Namespace, console: Console) -> int:
    container, config = _ctx(args)
    selector = ConvergenceSelector(container, config)
    result = selector.converge(args.task_id)
    if args.json:
        _emit_json(
            console,
            {
                "task_id": result.task_id,
                "outcome": result.outcome,
                "winner": result.winner,
                "candidates": result.candidates,
                "running": result.running,
                "raw_response": result.raw_response,
            },
        )
    else:
        console.print(result.message, highlight=False)
        if result.truncated:
            console.print(f"Diffs truncated for: {', '.join(result.truncated)}")
        if result.outcome == "no_verdict":
            console.print("Judge response:", style="bold")
            console.print(result.raw_response, markup=False, highlight=False)
            console.print(f"Pick one of {', '.join(result.candidates)} and run 'autom8 accept <worktree>'.")
    if result.outcome != "winner":
        return 1 if result.outcome == "no_verdict" else 0
    if args.accept and result.winner:
        accepted = LifecycleManager(container, liveness=selector.liveness).accept(result.winner)
        if not args.json:
            render_accept(console, accepted)
    return 0


def _accept(args: argparse.Namespace, console: Console) -> int:
    container, _ = _ctx(args)
    result = LifecycleManager(container).accept(args.worktree)
    render_accept(console, result)
    return 0


def _prune(args: argparse.Namespace, console: Console) -> int:
    container, _ = _ctx(args)
    report = LifecycleManager(container).prune()
    if args.json:
        _emit_json(
            console,
            {
                "tasks_pruned": report.tasks_pruned,
                "instances_removed": report.instances_removed,
                "failures": report.failures,
                "skipped_tasks": report.skipped_tasks,
            },
        )
    else:
        render_prune(console, report)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="autom8", description="autom8 - automate AI agent workflows")
    parser.add_argument("--project-dir", default=None, help="Repository directory (default: current directory)")
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["debug", "info", "warning", "error", "critical"],
        default=None,
        help="Set logging level (default: log_level from .autom8/config.yaml, else info)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    feature = subparsers.add_parser("feature", help="Create a new task")
    feature.add_argument("-p", "--prompt", required=True, help="Task prompt")
    feature.add_argument("-c", "--criteria", action="append", help="Verification criterion (repeatable)")
    feature.add_argument("-d", "--depends-on", default=None, help="ID of the task this one depends on")
    feature.add_argument("--json", action="store_true", help="Print machine-readable JSON")
    feature.set_defaults(func=_feature)

    list_cmd = subparsers.add_parser("list", help="List all saved tasks")
    list_cmd.add_argument("--json", action="store_true", help="Print machine-readable JSON")
    list_cmd.set_defaults(func=_list)

    delete = subparsers.add_parser("delete", help="Delete a task by ID")
    delete.add_argument("task_id")
    delete.set_defaults(func=_delete)

    implement = subparsers.add_parser("implement", help="Implement pending tasks in parallel worktrees")
    implement.add_argument("-n", "--instances", type=int, default=None, help="Instances per task (default: config, else 1)")
    implement.add_argument("--task", default=None, help="Only implement this task ID")
    implement.add_argument(
        "--mode",
        choices=[MODE_DETACHED, MODE_ITERATIVE],
        default=MODE_DETACHED,
        help=(
            "detached: spawn agents in the background; dependents branch from the parent as created. "
            "iterative: run agents to completion; dependents branch from the finished parent work"
        ),
    )
    implement.add_argument("--max-iterations", type=int, default=None, help="Iteration cap for iterative mode")
    implement.add_argument("--workers", type=int, default=None, help="Maximum concurrent instances")
    implement.add_argument("--json", action="store_true", help="Print machine-readable JSON")
    implement.set_defaults(func=_implement)

    status = subparsers.add_parser("status", help="Show the state of every worktree")
    status.add_argument("--json", action="store_true", help="Print machine-readable JSON")
    status.set_defaults(func=_status)

    converge = subparsers.add_parser("converge", help="Ask a judge agent to pick the best instance of a task")
    converge.add_argument("task_id")
    converge.add_argument("--accept", action="store_true", help="Accept the winner automatically")
    converge.add_argument("--json", action="store_true", help="Print machine-readable JSON")
    converge.set_defaults(func=_converge)

    accept = subparsers.add_parser("accept", help="Merge a worktree branch into the current branch and clean up")
    accept.add_argument("worktree")
    accept.set_defaults(func=_accept)

    prune = subparsers.add_parser("prune", help="Remove worktrees of completed tasks and drop the tasks")
    prune.add_argument("--json", action="store_true", help="Print machine-readable JSON")
    prune.set_defaults(func=_prune)

    return parser


def main(argv: list[str] | None = None, *, console: Optional[Console] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.log_level or "warning")
    console = console or Console()
    try:
        return int(args.func(args, console) or 0)
    except Autom8Error as exc:
        sys.stderr.write(f"Error: {exc}\n")
        return 1
