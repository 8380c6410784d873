"""Tests for judge verdict parsing and winner selection."""

from __future__ import annotations

import json
import os
import shutil
import subprocess
from pathlib import Path

import pytest

from autom8.agent import AgentRun
from autom8.config import Autom8Config
from autom8.convergence import ConvergenceSelector, JudgeError, parse_verdict, unwrap_envelope
from autom8.store import Autom8Container, TaskNotFoundError

CANDIDATES = ["task-1-1", "task-1-2", "task-1-3"]


def _git_init(path: Path) -> None:
    """Initialize a git repo on `main` with an initial commit."""
    subprocess.run(["git", "init"], cwd=path, check=True, capture_output=True, text=True)
    subprocess.run(["git", "symbolic-ref", "HEAD", "refs/heads/main"], cwd=path, check=True, capture_output=True, text=True)
    subprocess.run(["git", "config", "user.email", "test@test.com"], cwd=path, check=True, capture_output=True, text=True)
    subprocess.run(["git", "config", "user.name", "Test"], cwd=path, check=True, capture_output=True, text=True)
    subprocess.run(["git", "config", "commit.gpgsign", "false"], cwd=path, check=True, capture_output=True, text=True)
    (path / "README.md").write_text("# init\n")
    subprocess.run(["git", "add", "-A"], cwd=path, check=True, capture_output=True, text=True)
    subprocess.run(["git", "commit", "-m", "initial"], cwd=path, check=True, capture_output=True, text=True)


def _make_instance(container: Autom8Container, name: str, content: str) -> Path:
    path = container.worktree_path(name)
    path.parent.mkdir(parents=True, exist_ok=True)
    subprocess.run(
        ["git", "worktree", "add", "-b", f"autom8/{name}", str(path)],
        cwd=container.project_dir,
        check=True,
        capture_output=True,
        text=True,
    )
    (path / "impl.py").write_text(content)
    subprocess.run(["git", "add", "-A"], cwd=path, check=True, capture_output=True, text=True)
    subprocess.run(["git", "commit", "-m", f"work in {name}"], cwd=path, check=True, capture_output=True, text=True)
    return path


class FakeJudge:
    def __init__(self, output: str, exit_code: int = 0) -> None:
        self.output = output
        self.exit_code = exit_code
        self.calls: list[tuple[str, Path, Path]] = []

    def run(self, prompt: str, cwd: Path, log_path: Path) -> AgentRun:
        self.calls.append((prompt, Path(cwd), Path(log_path)))
        return AgentRun(exit_code=self.exit_code, output=self.output)


class TestParseVerdict:
    def test_plain_winner_line(self) -> None:
        assert parse_verdict("Reasoning...\nWINNER: task-1-2\n", CANDIDATES) == "task-1-2"

    def test_inline_bold_verdict(self) -> None:
        response = "... the cleanest solution is **WINNER: A-1**"
        assert parse_verdict(response, ["A-1", "A-2"]) == "A-1"

    def test_case_and_markdown_emphasis(self) -> None:
        assert parse_verdict("**Winner:** `task-1-3`.", CANDIDATES) == "task-1-3"
        assert parse_verdict("winner: *task-1-1*", CANDIDATES) == "task-1-1"

    def test_json_envelope(self) -> None:
        envelope = json.dumps({"type": "result", "result": "Both fine.\nWINNER: task-1-1"})
        assert parse_verdict(envelope, CANDIDATES) == "task-1-1"

    def test_first_valid_winner_line_wins(self) -> None:
        text = "WINNER: task-9-9\nWINNER: task-1-3\nWINNER: task-1-1"
        assert parse_verdict(text, CANDIDATES) == "task-1-3"

    def test_proximity_fallback(self) -> None:
        text = "After comparing all three, task-1-2 is clearly the best implementation."
        assert parse_verdict(text, CANDIDATES) == "task-1-2"

    def test_proximity_fallback_needs_whole_name(self) -> None:
        candidates = ["task-1-1", "task-1-10"]
        assert parse_verdict("task-1-10 is the best of the bunch.", candidates) == "task-1-10"
        assert parse_verdict("task-1-10x is the best.", candidates) is None

    def test_no_verdict(self) -> None:
        assert parse_verdict("I could not decide between them.", CANDIDATES) is None
        assert parse_verdict("WINNER: task-7-7", CANDIDATES) is None
        assert parse_verdict("", CANDIDATES) is None

    def test_unwrap_envelope_passthrough(self) -> None:
        assert unwrap_envelope("not json") == "not json"
        assert unwrap_envelope("{broken") == "{broken"
        assert unwrap_envelope('{"other": 1}') == '{"other": 1}'
        assert unwrap_envelope('{"result": "x"}') == "x"


def _selector(tmp_path: Path, judge: FakeJudge, **config: object) -> tuple[Autom8Container, ConvergenceSelector, str]:
    _git_init(tmp_path)
    container = Autom8Container(tmp_path)
    task = container.tasks.add("Implement feature X", ["has tests"])
    selector = ConvergenceSelector(container, Autom8Config(**config), judge=judge)  # type: ignore[arg-type]
    return container, selector, task.id


def test_converge_records_winner(tmp_path: Path) -> None:
    judge = FakeJudge(json.dumps({"result": "Candidate two handles errors.\nWINNER: PLACEHOLDER"}))
    container, selector, task_id = _selector(tmp_path, judge)
    for i in (1, 2, 3):
        _make_instance(container, f"{task_id}-{i}", f"VALUE = {i}\n")
    judge.output = judge.output.replace("PLACEHOLDER", f"{task_id}-2")

    result = selector.converge(task_id)

    assert result.outcome == "winner"
    assert result.winner == f"{task_id}-2"
    assert result.candidates == [f"{task_id}-1", f"{task_id}-2", f"{task_id}-3"]
    assert container.tasks.require(task_id).winner == f"{task_id}-2"

    prompt, cwd, log_path = judge.calls[0]
    assert cwd == container.project_dir
    assert log_path == container.logs_dir / task_id / "convergence.log"
    assert "Implement feature X" in prompt
    assert "has tests" in prompt
    for i in (1, 2, 3):
        assert f"## Candidate: {task_id}-{i}" in prompt
        assert f"+VALUE = {i}" in prompt


def test_converge_includes_uncommitted_changes(tmp_path: Path) -> None:
    judge = FakeJudge("no idea")
    container, selector, task_id = _selector(tmp_path, judge)
    _make_instance(container, f"{task_id}-1", "A = 1\n")
    path = _make_instance(container, f"{task_id}-2", "B = 1\n")
    (path / "extra.py").write_text("UNTRACKED = True\n")

    selector.converge(task_id)

    prompt = judge.calls[0][0]
    assert "UNTRACKED FILES:\nextra.py" in prompt


def test_converge_without_verdict_keeps_raw_response(tmp_path: Path) -> None:
    judge = FakeJudge("They are both great, honestly.")
    container, selector, task_id = _selector(tmp_path, judge)
    _make_instance(container, f"{task_id}-1", "A = 1\n")
    _make_instance(container, f"{task_id}-2", "A = 2\n")

    result = selector.converge(task_id)

    assert result.outcome == "no_verdict"
    assert result.winner is None
    assert result.raw_response == "They are both great, honestly."
    assert container.tasks.require(task_id).winner is None


def test_converge_needs_two_candidates(tmp_path: Path) -> None:
    judge = FakeJudge("WINNER: x")
    container, selector, task_id = _selector(tmp_path, judge)
    _make_instance(container, f"{task_id}-1", "A = 1\n")

    result = selector.converge(task_id)

    assert result.outcome == "insufficient"
    assert judge.calls == []


def test_converge_waits_for_running_instances(tmp_path: Path) -> None:
    judge = FakeJudge("WINNER: x")
    container, selector, task_id = _selector(tmp_path, judge)
    _make_instance(container, f"{task_id}-1", "A = 1\n")
    _make_instance(container, f"{task_id}-2", "A = 2\n")
    container.pids.set(f"{task_id}-2", os.getpid())

    result = selector.converge(task_id)

    assert result.outcome == "wait"
    assert result.running == [f"{task_id}-2"]
    assert "still has running instances" in result.message
    assert judge.calls == []


def test_converge_truncates_large_diffs(tmp_path: Path) -> None:
    judge = FakeJudge("no verdict")
    container, selector, task_id = _selector(tmp_path, judge, diff_char_budget=40)
    _make_instance(container, f"{task_id}-1", "A = 1\n" * 50)
    _make_instance(container, f"{task_id}-2", "B = 2\n" * 50)

    result = selector.converge(task_id)

    assert result.truncated == [f"{task_id}-1", f"{task_id}-2"]
    assert judge.calls[0][0].count("[... diff truncated ...]") == 2


def test_converge_unknown_task(tmp_path: Path) -> None:
    _, selector, _ = _selector(tmp_path, FakeJudge(""))
    with pytest.raises(TaskNotFoundError):
        selector.converge("task-nope")


def test_judge_launch_failure_is_wrapped(tmp_path: Path) -> None:
    class BrokenJudge:
        def run(self, prompt: str, cwd: Path, log_path: Path) -> AgentRun:
            raise FileNotFoundError("claude")

    _git_init(tmp_path)
    container = Autom8Container(tmp_path)
    task = container.tasks.add("x")
    _make_instance(container, f"{task.id}-1", "A\n")
    _make_instance(container, f"{task.id}-2", "B\n")
    selector = ConvergenceSelector(container, Autom8Config(), judge=BrokenJudge())  # type: ignore[arg-type]

    with pytest.raises(JudgeError, match="Unable to run judge"):
        selector.converge(task.id)


@pytest.mark.skipif(shutil.which("sh") is None or shutil.which("wc") is None, reason="requires sh and wc")
def test_converge_many_large_candidates_reaches_judge(tmp_path: Path) -> None:
    _git_init(tmp_path)
    container = Autom8Container(tmp_path)
    task = container.tasks.add("Implement feature X")
    names = [f"{task.id}-{i}" for i in range(1, 10)]
    for i, name in enumerate(names, start=1):
        _make_instance(container, name, "".join(f"VALUE_{i}_{n} = {n}\n" for n in range(2000)))
    judge_command = f"sh -c 'wc -c; echo \"WINNER: $0\"' {names[-1]}"
    selector = ConvergenceSelector(container, Autom8Config(judge_command=judge_command))

    result = selector.converge(task.id)

    assert result.outcome == "winner"
    assert result.winner == names[-1]
    assert result.truncated == names
    assert int(result.raw_response.split()[0]) > 128 * 1024
