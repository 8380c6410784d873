"""Assemble the request texts sent to the implementing and judging agents."""

from __future__ import annotations

from dataclasses import dataclass

from .constants import COMPLETION_SENTINEL, DIFF_TRUNCATION_MARKER, VERDICT_KEYWORD
from .io_utils import _truncate_for_prompt
from .models import Task


def _criteria_block(task: Task) -> str:
    if not task.verification_criteria:
        return ""
    lines = "\n".join(f"- {criterion}" for criterion in task.verification_criteria)
    return f"Verification criteria:\n{lines}\n"


def build_task_prompt(task: Task, *, template: str = "", iterative: bool = False) -> str:
    """Concatenate the instruction template, task prompt, and verification criteria."""
    parts: list[str] = []
    if template.strip():
        parts.append(template.strip())
    parts.append(task.prompt.strip())
    criteria = _criteria_block(task)
    if criteria:
        parts.append(criteria.rstrip())
    if iterative:
        parts.append(
            "Work in this checkout until every verification criterion is met. "
            f"When the task is fully complete, output exactly {COMPLETION_SENTINEL} on its own line. "
            "Do not output it before then."
        )
    return "\n\n".join(parts) + "\n"


@dataclass(frozen=True)
class CandidateDiff:
    name: str
    diff: str
    truncated: bool = False


def cap_diff(name: str, diff: str, max_chars: int) -> CandidateDiff:
    text, truncated = _truncate_for_prompt(diff, max_chars, DIFF_TRUNCATION_MARKER)
    return CandidateDiff(name=name, diff=text, truncated=truncated)


def build_convergence_prompt(task: Task, candidates: list[CandidateDiff]) -> str:
    """Build a single comparison request over every candidate's diff."""
    names = ", ".join(candidate.name for candidate in candidates)
    sections = [
        "You are reviewing several independent implementations of the same task "
        "and must pick the single best one.",
        f"## Task\n\n{task.prompt.strip()}",
    ]
    criteria = _criteria_block(task)
    if criteria:
        sections.append(f"## {criteria.rstrip()}")
    for candidate in candidates:
        body = candidate.diff or "(no changes)"
        sections.append(f"## Candidate: {candidate.name}\n\n```diff\n{body}\n```")
    sections.append(
        "## Instructions\n\n"
        "Compare the candidates for correctness, completeness against the verification "
        "criteria, and code quality. Explain your reasoning briefly, then finish with a "
        f"single line of the form:\n\n{VERDICT_KEYWORD}: <candidate-name>\n\n"
        f"where <candidate-name> is exactly one of: {names}"
    )
    return "\n\n".join(sections) + "\n"
