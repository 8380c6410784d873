"""Provide the git helpers autom8 uses to manage worktrees and branches."""

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Optional

from loguru import logger

from .constants import STATE_DIR_NAME


def _git(project_dir: Path, *args: str) -> subprocess.CompletedProcess[str]:
    return subprocess.run(
        ["git", *args],
        cwd=project_dir,
        capture_output=True,
        text=True,
        check=False,
    )


def _output(result: subprocess.CompletedProcess[str]) -> str:
    return ((result.stdout or "") + (result.stderr or "")).strip()


def _git_toplevel(path: Path) -> Optional[Path]:
    try:
        result = _git(path, "rev-parse", "--show-toplevel")
    except (FileNotFoundError, NotADirectoryError):
        return None
    if result.returncode != 0:
        return None
    top = result.stdout.strip()
    return Path(top) if top else None


def _git_current_branch(project_dir: Path) -> Optional[str]:
    result = _git(project_dir, "branch", "--show-current")
    if result.returncode != 0:
        return None
    return result.stdout.strip() or None


def _git_branch_exists(project_dir: Path, branch: str) -> bool:
    result = _git(project_dir, "show-ref", "--verify", f"refs/heads/{branch}")
    return result.returncode == 0


def _git_has_changes(project_dir: Path) -> bool:
    result = _git(project_dir, "status", "--porcelain")
    return result.returncode == 0 and bool(result.stdout.strip())


def _git_commits_ahead(project_dir: Path, baseline: str) -> int:
    result = _git(project_dir, "rev-list", "--count", "HEAD", f"^{baseline}")
    if result.returncode != 0:
        return 0
    try:
        return int(result.stdout.strip() or 0)
    except ValueError:
        return 0


def _git_worktree_add(
    project_dir: Path,
    worktree_path: Path,
    branch: str,
    base_branch: Optional[str] = None,
) -> subprocess.CompletedProcess[str]:
    args = ["worktree", "add", "-b", branch, str(worktree_path)]
    if base_branch:
        args.append(base_branch)
    return _git(project_dir, *args)


def _git_worktree_remove(
    project_dir: Path,
    worktree_path: Path,
    *,
    force: bool = False,
) -> subprocess.CompletedProcess[str]:
    args = ["worktree", "remove", str(worktree_path)]
    if force:
        args.append("--force")
    return _git(project_dir, *args)


def _git_delete_branch(
    project_dir: Path,
    branch: str,
    *,
    force: bool = False,
) -> subprocess.CompletedProcess[str]:
    return _git(project_dir, "branch", "-D" if force else "-d", branch)


def _git_merge(project_dir: Path, branch: str, message: str) -> subprocess.CompletedProcess[str]:
    return _git(project_dir, "merge", branch, "-m", message)


def _git_merge_in_progress(project_dir: Path) -> bool:
    result = _git(project_dir, "rev-parse", "-q", "--verify", "MERGE_HEAD")
    return result.returncode == 0


def _git_commit_all(project_dir: Path, message: str) -> subprocess.CompletedProcess[str]:
    staged = _git(project_dir, "add", "-A")
    if staged.returncode != 0:
        return staged
    return _git(project_dir, "commit", "-m", message)


def _git_diff_against(project_dir: Path, baseline: str) -> str:
    """Return the committed and uncommitted diff of a worktree relative to `baseline`."""
    sections: list[str] = []
    commands = [
        ("COMMITTED DIFF", ["diff", f"{baseline}...HEAD"]),
        ("UNCOMMITTED DIFF", ["diff", "HEAD"]),
    ]
    for label, command in commands:
        result = _git(project_dir, *command)
        if result.returncode != 0:
            logger.debug("git {} failed in {}: {}", " ".join(command), project_dir, _output(result))
            continue
        content = result.stdout.strip()
        if content:
            sections.append(f"{label}:\n{content}")
    untracked = _git(project_dir, "ls-files", "--others", "--exclude-standard")
    if untracked.returncode == 0 and untracked.stdout.strip():
        sections.append("UNTRACKED FILES:\n" + untracked.stdout.strip())
    return "\n\n".join(sections).strip()


def _git_exclude_path(project_dir: Path) -> Optional[Path]:
    result = _git(project_dir, "rev-parse", "--git-path", "info/exclude")
    if result.returncode != 0 or not result.stdout.strip():
        return None
    path = Path(result.stdout.strip())
    return path if path.is_absolute() else project_dir / path


def _ignore_file_has_entry(path: Path, ignore_entry: str) -> bool:
    if not path.exists():
        return False
    try:
        contents = path.read_text()
    except OSError:
        return False
    lines = {
        line.strip().rstrip("/")
        for line in contents.splitlines()
        if line.strip() and not line.lstrip().startswith("#")
    }
    return ignore_entry.strip().rstrip("/") in lines


def _append_ignore_entry(path: Path, ignore_entry: str) -> None:
    contents = ""
    if path.exists():
        contents = path.read_text()
    if contents and not contents.endswith("\n"):
        contents += "\n"
    contents += ignore_entry + "\n"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(contents)


def _ensure_state_dir_excluded(project_dir: Path) -> None:
    """Keep `.autom8/` out of `git status` without touching tracked files."""
    exclude_path = _git_exclude_path(project_dir)
    if exclude_path is None:
        return
    entry = f"{STATE_DIR_NAME}/"
    try:
        if not _ignore_file_has_entry(exclude_path, entry):
            _append_ignore_entry(exclude_path, entry)
    except OSError as exc:
        logger.warning("Unable to update {}: {}", exclude_path, exc)
