"""Workflow orchestration."""

from .executor import CliOptions, Executor, resolve_mode

__all__ = ["CliOptions", "Executor", "resolve_mode"]
