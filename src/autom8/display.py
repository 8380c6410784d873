"""Render tasks, plans and instance status with rich."""

from __future__ import annotations

from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.tree import Tree

from .lifecycle import AcceptResult, PruneReport
from .models import InstanceResult, Task
from .planner import BranchPlan
from .utils import _parse_iso, truncate
from .worktrees import InstanceStatus

_STATE_STYLES = {
    "running": "[yellow]running[/yellow] (AI working)",
    "modified": "[magenta]modified[/magenta]",
    "committed": "[green]committed[/green]",
    "idle": "[dim]idle[/dim]",
}

_RESULT_STYLES = {
    "skipped": "dim",
    "started": "green",
    "completed": "green",
    "failed": "red",
    "stopped_at_limit": "yellow",
}


def render_tasks(console: Console, tasks: list[Task]) -> None:
    if not tasks:
        console.print("No tasks found. Use 'autom8 feature' to create one.")
        return
    table = Table(title=f"{len(tasks)} task(s)", show_header=True)
    table.add_column("#", justify="right")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Status", style="bold")
    table.add_column("Prompt")
    table.add_column("Depends on")
    table.add_column("Criteria")
    table.add_column("Winner")
    table.add_column("Created")
    for index, task in enumerate(tasks, 1):
        created = _parse_iso(task.created_at)
        table.add_row(
            str(index),
            escape(task.id),
            task.status,
            escape(truncate(task.prompt, 60)),
            escape(task.depends_on or ""),
            "\n".join(f"- {escape(c)}" for c in task.verification_criteria),
            escape(task.winner or ""),
            created.strftime("%Y-%m-%d %H:%M:%S") if created else task.created_at,
        )
    console.print(table)


def render_plan(console: Console, plan: BranchPlan) -> None:
    n = plan.instances_per_task
    console.print(f"Implementing with {n} instance(s) per task...")
    console.print(
        f"  Independent: {len(plan.independent_tasks)} task(s) x {n} = {plan.independent_count} worktrees"
    )
    if plan.dependent_tasks:
        console.print(
            f"  Dependent: {len(plan.dependent_tasks)} task(s) x {n}^2 = {plan.dependent_count} worktrees (exponential)"
        )
    tree = Tree("[bold]Branching plan[/bold]")
    nodes: dict[str, Tree] = {}
    for planned in plan.instances:
        parent = nodes.get(planned.base_branch or "", tree)
        node = parent.add(f"[cyan]{planned.name}[/cyan] [dim]({planned.branch})[/dim]")
        nodes[planned.branch] = node
    console.print(tree)


def render_result(console: Console, result: InstanceResult) -> None:
    style = _RESULT_STYLES.get(result.kind, "")
    text = escape(str(result))
    console.print(f"[{style}]{text}[/{style}]" if style else text, highlight=False)


def render_status(console: Console, statuses: list[InstanceStatus]) -> None:
    if not statuses:
        console.print("No worktrees found. Use 'autom8 implement' to create implementations.")
        return
    table = Table(title=f"{len(statuses)} worktree(s)", show_header=True)
    table.add_column("Worktree", style="cyan", no_wrap=True)
    table.add_column("Status")
    table.add_column("Branch")
    table.add_column("Ahead", justify="right")
    table.add_column("Uncommitted")
    table.add_column("Next step")
    for status in statuses:
        table.add_row(
            escape(status.name),
            _STATE_STYLES.get(status.state, status.state),
            escape(status.branch or "unknown"),
            str(status.commits_ahead),
            "yes" if status.has_changes else "",
            f"autom8 accept {escape(status.name)}" if status.can_accept else "",
        )
    console.print(table)
    console.print("Tip: cd into a worktree to see detailed changes with 'git status' and 'git log'")


def render_accept(console: Console, result: AcceptResult) -> None:
    if result.auto_committed:
        console.print("Auto-committed uncommitted changes.")
    if result.merge_output:
        console.print(result.merge_output, markup=False, highlight=False)
    for warning in result.warnings:
        console.print(f"[yellow]Warning:[/yellow] {escape(warning)}", highlight=False)
    console.print(f"[green]Successfully accepted worktree '{escape(result.name)}'[/green]")


def render_prune(console: Console, report: PruneReport) -> None:
    console.print(
        f"Pruned {len(report.tasks_pruned)} task(s), removed {len(report.instances_removed)} worktree(s)"
    )
    if report.failures:
        console.print(f"[yellow]{len(report.failures)} worktree(s) could not be removed:[/yellow] {escape(', '.join(report.failures))}")
    if report.skipped_tasks:
        console.print(f"Kept completed task(s) with unfinished dependents: {escape(', '.join(report.skipped_tasks))}")
