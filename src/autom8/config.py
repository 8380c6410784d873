"""Load optional autom8 configuration from `.autom8/config.yaml`."""

from __future__ import annotations

from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from .constants import (
    CONFIG_FILE,
    DEFAULT_AGENT_COMMAND,
    DEFAULT_BASELINE_BRANCH,
    DEFAULT_DIFF_CHAR_BUDGET,
    DEFAULT_INSTANCES,
    DEFAULT_JUDGE_COMMAND,
    DEFAULT_LOG_LEVEL,
    DEFAULT_MAX_WORKERS,
    STATE_DIR_NAME,
)
from .io_utils import _load_yaml_with_error

VALID_LOG_LEVELS = {"debug", "info", "warning", "error", "critical"}


@dataclass(frozen=True)
class Autom8Config:
    """Resolved configuration for a single invocation."""

    max_workers: int = DEFAULT_MAX_WORKERS
    instances: int = DEFAULT_INSTANCES
    baseline_branch: str = DEFAULT_BASELINE_BRANCH
    agent_command: str = DEFAULT_AGENT_COMMAND
    judge_command: str = DEFAULT_JUDGE_COMMAND
    template_file: Optional[str] = None
    diff_char_budget: int = DEFAULT_DIFF_CHAR_BUDGET
    log_level: str = DEFAULT_LOG_LEVEL

    def with_overrides(self, **overrides: Any) -> "Autom8Config":
        """Return a copy with every non-None override applied."""
        changes = {key: value for key, value in overrides.items() if value is not None}
        return replace(self, **changes) if changes else self


def _positive_int(value: Any, default: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        return default
    return value if value >= 1 else default


def _non_empty_str(value: Any, default: Optional[str]) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return default


def parse_config(raw: dict[str, Any]) -> Autom8Config:
    """Build an `Autom8Config` from a raw mapping, ignoring invalid values.

    Args:
        raw: Mapping loaded from the config file.

    Returns:
        The resolved configuration.
    """
    defaults = Autom8Config()
    log_level = str(raw.get("log_level") or defaults.log_level).lower()
    if log_level not in VALID_LOG_LEVELS:
        log_level = defaults.log_level
    return Autom8Config(
        max_workers=_positive_int(raw.get("max_workers"), defaults.max_workers),
        instances=_positive_int(raw.get("instances"), defaults.instances),
        baseline_branch=_non_empty_str(raw.get("baseline_branch"), defaults.baseline_branch) or defaults.baseline_branch,
        agent_command=_non_empty_str(raw.get("agent_command"), defaults.agent_command) or defaults.agent_command,
        judge_command=_non_empty_str(raw.get("judge_command"), defaults.judge_command) or defaults.judge_command,
        template_file=_non_empty_str(raw.get("template_file"), None),
        diff_char_budget=_positive_int(raw.get("diff_char_budget"), defaults.diff_char_budget),
        log_level=log_level,
    )


def load_config(project_dir: Path) -> tuple[Autom8Config, str | None]:
    """Load the optional config file.

    Args:
        project_dir: Repository root directory.

    Returns:
        A tuple of `(config, error_message)`. If the file is missing or cannot
        be parsed, the defaults are returned.
    """
    path = project_dir.resolve() / STATE_DIR_NAME / CONFIG_FILE
    data, err = _load_yaml_with_error(path, {})
    if err:
        return Autom8Config(), err
    return parse_config(data), None


def load_template(project_dir: Path, config: Autom8Config) -> str:
    """Read the agent instruction template named in the config, if any."""
    if not config.template_file:
        return ""
    path = Path(config.template_file)
    if not path.is_absolute():
        path = project_dir / path
    try:
        return path.read_text(encoding="utf-8")
    except OSError as exc:
        logger.warning("Unable to read template {}: {}", path, exc)
        return ""
