"""Domain model for image mirroring workflows.

Type-safe objects shared by the orchestrator and its collaborators in place
of loosely shaped dicts.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

# ==============================================================================
# Workflow Domain
# ==============================================================================


class WorkflowMode(Enum):
    """Operating mode of a run, derived once from the command line."""

    MIRROR_TO_DISK = "mirrorToDisk"
    DISK_TO_MIRROR = "diskToMirror"
    PREPARE = "prepare"


class ContentType(Enum):
    """Category of images produced by one collector phase."""

    RELEASE = "release"
    OPERATOR = "operator"
    ADDITIONAL = "additional"


@dataclass(frozen=True)
class WorkItem:
    """One image to copy.

    Identity is the (source, destination) pair; content_type only tells
    downstream consumers which collector phase produced it.
    """

    source: str  # e.g., "docker://quay.io/ns/img:tag"
    destination: str  # e.g., "docker://localhost:5000/ns/img:tag"
    origin: str = field(default="", compare=False)  # upstream reference
    content_type: ContentType | None = field(default=None, compare=False)

    @property
    def key(self) -> tuple[str, str]:
        return (self.source, self.destination)


@dataclass(frozen=True)
class RunOptions:
    """Resolved configuration of a run.

    Built once during setup and read-only afterwards; use
    dataclasses.replace() to derive a modified copy.
    """

    destination: str
    mode: WorkflowMode
    root_dir: Path
    working_dir: Path
    cache_dir: Path
    config_path: str
    from_dir: str = ""
    port: int = 5000
    log_level: str = "info"
    multi_arch: str = "system"
    quiet: bool = False
    force: bool = False
    secure_policy: bool = False
    src_tls_verify: bool = True
    dest_tls_verify: bool = True
    retry_times: int = 2

    @property
    def local_storage_fqdn(self) -> str:
        return f"localhost:{self.port}"

    def is_mirror_to_disk(self) -> bool:
        return self.mode == WorkflowMode.MIRROR_TO_DISK

    def is_disk_to_mirror(self) -> bool:
        return self.mode == WorkflowMode.DISK_TO_MIRROR

    def is_prepare(self) -> bool:
        return self.mode == WorkflowMode.PREPARE


@dataclass
class RunContext:
    """Cancellation carrier threaded through collection and transfer."""

    cancel_event: threading.Event = field(default_factory=threading.Event)

    def cancel(self) -> None:
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def raise_if_cancelled(self) -> None:
        if self.cancel_event.is_set():
            raise InterruptedError("run was cancelled")


# ==============================================================================
# Local Cache Registry Domain
# ==============================================================================


class RegistryState(Enum):
    """Lifecycle of the embedded cache registry."""

    CONSTRUCTED = "constructed"
    STARTING = "starting"
    SERVING = "serving"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"


class ShutdownKind(Enum):
    REQUESTED = "requested"  # sent by the orchestrator once it is done
    FAULT = "fault"  # anything else


@dataclass(frozen=True)
class ShutdownReason:
    """Terminal signal of the cache registry, compared by kind."""

    kind: ShutdownKind
    detail: str = ""

    @classmethod
    def requested(cls, detail: str = "") -> ShutdownReason:
        return cls(ShutdownKind.REQUESTED, detail)

    @classmethod
    def fault(cls, detail: str) -> ShutdownReason:
        return cls(ShutdownKind.FAULT, detail)

    @property
    def is_requested(self) -> bool:
        return self.kind == ShutdownKind.REQUESTED
