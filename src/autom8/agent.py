"""Drive the external coding agent: detached spawns and sentinel-terminated loops."""

from __future__ import annotations

import shlex
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol

from loguru import logger

from .constants import COMPLETION_SENTINEL
from .models import AgentOutcome


@dataclass(frozen=True)
class AgentRun:
    exit_code: int
    output: str


class AgentRunner(Protocol):
    def spawn(self, prompt: str, cwd: Path, log_path: Path) -> int:
        """Start the agent without waiting and return its process id."""
        ...

    def run(self, prompt: str, cwd: Path, log_path: Path) -> AgentRun:
        """Run the agent to completion and return its combined output."""
        ...


def build_command(command: str, *, prompt: str, prompt_file: Path, project_dir: Path) -> tuple[list[str], bool]:
    """Expand an agent command template into argv.

    The template is split first and placeholders are filled per argument, so
    prompt text never goes through shell-style splitting.

    Returns:
        `(argv, expects_stdin)`. `expects_stdin` is True whenever the template
        has no prompt placeholder; the prompt is then piped on stdin, whether
        or not the template passes `-`. Stdin has no argv size limit, so large
        prompts should use this form.
    """
    parts = shlex.split(command)
    if not parts:
        raise ValueError("Agent command is empty")
    uses_prompt_placeholder = "{prompt_file}" in command or "{prompt}" in command
    argv: list[str] = []
    for part in parts:
        try:
            argv.append(
                part.format(
                    prompt=prompt,
                    prompt_file=str(prompt_file),
                    project_dir=str(project_dir),
                )
            )
        except (KeyError, IndexError) as exc:
            raise ValueError(f"Unknown placeholder in agent command: {exc}") from exc
    return argv, not uses_prompt_placeholder


def contains_sentinel(output: str, sentinel: str = COMPLETION_SENTINEL) -> bool:
    return sentinel in (output or "")


class SubprocessAgentRunner:
    """Run the agent CLI named by an autom8 command template."""

    def __init__(self, command: str) -> None:
        self.command = command

    def _prepare(self, prompt: str, cwd: Path, log_path: Path) -> tuple[list[str], bool]:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        prompt_file = log_path.with_suffix(".prompt.txt")
        prompt_file.write_text(prompt, encoding="utf-8")
        return build_command(self.command, prompt=prompt, prompt_file=prompt_file, project_dir=cwd)

    def spawn(self, prompt: str, cwd: Path, log_path: Path) -> int:
        argv, expects_stdin = self._prepare(prompt, cwd, log_path)
        with open(log_path, "w", encoding="utf-8") as log_handle:
            process = subprocess.Popen(
                argv,
                cwd=cwd,
                stdin=subprocess.PIPE if expects_stdin else subprocess.DEVNULL,
                stdout=log_handle,
                stderr=subprocess.STDOUT,
                text=True,
                start_new_session=True,
            )
        if expects_stdin and process.stdin:
            try:
                process.stdin.write(prompt)
                process.stdin.close()
            except BrokenPipeError:
                pass
        logger.debug("Spawned agent pid={} in {}", process.pid, cwd)
        return process.pid

    def run(self, prompt: str, cwd: Path, log_path: Path) -> AgentRun:
        argv, expects_stdin = self._prepare(prompt, cwd, log_path)
        result = subprocess.run(
            argv,
            cwd=cwd,
            input=prompt if expects_stdin else None,
            stdin=None if expects_stdin else subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            check=False,
        )
        output = result.stdout or ""
        log_path.write_text(output, encoding="utf-8")
        return AgentRun(exit_code=result.returncode, output=output)


def iterate_until_complete(
    runner: AgentRunner,
    *,
    prompt: str,
    cwd: Path,
    log_dir: Path,
    max_iterations: Optional[int] = None,
    sentinel: str = COMPLETION_SENTINEL,
) -> AgentOutcome:
    """Run the agent repeatedly until it prints `sentinel` or the cap is exceeded.

    Iteration `i` is logged to `log_dir/iteration-<i>.log`.
    """
    outcome = AgentOutcome.pending()
    iteration = 0
    while not outcome.is_done:
        iteration += 1
        if max_iterations is not None and iteration > max_iterations:
            outcome = AgentOutcome.stopped_at_limit(iteration - 1)
            break
        log_path = log_dir / f"iteration-{iteration}.log"
        try:
            run = runner.run(prompt, cwd, log_path)
        except (OSError, ValueError) as exc:
            outcome = AgentOutcome.failed(f"iteration {iteration}: {exc}", iteration)
            break
        if run.exit_code != 0:
            outcome = AgentOutcome.failed(
                f"iteration {iteration}: agent exited with code {run.exit_code}",
                iteration,
            )
        elif contains_sentinel(run.output, sentinel):
            outcome = AgentOutcome.completed(iteration)
        else:
            logger.debug("Iteration {} in {} finished without completion sentinel", iteration, cwd)
    return outcome
