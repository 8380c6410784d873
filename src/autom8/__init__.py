"""Provide the public `autom8` package exports."""

from __future__ import annotations

from .cli import main

__all__ = ["main"]
