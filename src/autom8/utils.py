"""Provide utility helpers for timestamps and identifiers."""

from __future__ import annotations

import threading
import time
from datetime import datetime, timezone
from typing import Optional

from .constants import TASK_ID_PREFIX

_id_lock = threading.Lock()
_last_id_ns = 0


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _parse_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        if not isinstance(value, str):
            value = str(value)
        if value.endswith("Z"):
            value = value[:-1] + "+00:00"
        dt = datetime.fromisoformat(value)
        # If a naive timestamp slips in, assume UTC to avoid crashes.
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt
    except ValueError:
        return None


def new_task_id() -> str:
    """Return a time-derived task id that is strictly increasing within the process."""
    global _last_id_ns
    with _id_lock:
        stamp = time.time_ns()
        if stamp <= _last_id_ns:
            stamp = _last_id_ns + 1
        _last_id_ns = stamp
    return f"{TASK_ID_PREFIX}{stamp}"


def truncate(text: str, max_len: int) -> str:
    text = text.replace("\n", " ")
    if len(text) <= max_len:
        return text
    return text[: max_len - 3] + "..."
