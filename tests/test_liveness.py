"""Tests for pid-based liveness tracking."""

from __future__ import annotations

import os
import subprocess
from pathlib import Path

import autom8.liveness as liveness_mod
from autom8.liveness import LivenessTracker, pid_is_alive
from autom8.store import Autom8Container


def _dead_pid() -> int:
    proc = subprocess.Popen(["true"])
    proc.wait()
    return proc.pid


def test_pid_is_alive() -> None:
    assert pid_is_alive(os.getpid())
    assert not pid_is_alive(None)
    assert not pid_is_alive(0)
    assert not pid_is_alive(-5)
    assert not pid_is_alive(_dead_pid())


def test_permission_error_counts_as_alive(monkeypatch) -> None:
    def _deny(pid: int, sig: int) -> None:
        raise PermissionError

    monkeypatch.setattr(liveness_mod.os, "kill", _deny)
    assert pid_is_alive(1234)


def test_tracker_records_and_forgets(tmp_path: Path) -> None:
    tracker = LivenessTracker(Autom8Container(tmp_path).pids)
    tracker.record("task-1-1", os.getpid())
    tracker.record("task-1-2", _dead_pid())

    assert tracker.pid_for("task-1-1") == os.getpid()
    assert tracker.is_running("task-1-1")
    assert not tracker.is_running("task-1-2")
    assert not tracker.is_running("task-unknown")
    assert tracker.running_names() == ["task-1-1"]

    assert tracker.purge_stale() == ["task-1-2"]
    assert tracker.pid_for("task-1-2") is None

    assert tracker.forget("task-1-1") == ["task-1-1"]
    assert tracker.running_names() == []
