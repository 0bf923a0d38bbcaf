"""Domain objects shared across the mirror workflows."""

from .models import (
    ContentType,
    RegistryState,
    RunContext,
    RunOptions,
    ShutdownKind,
    ShutdownReason,
    WorkflowMode,
    WorkItem,
)

__all__ = [
    "ContentType",
    "RegistryState",
    "RunContext",
    "RunOptions",
    "ShutdownKind",
    "ShutdownReason",
    "WorkflowMode",
    "WorkItem",
]
