from __future__ import annotations

import sys
import time
import uuid
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from loguru import Logger

from loguru import logger

REGISTRY_SOURCE = "registry"

# CLI log level names -> loguru level names
LEVEL_NAMES = {
    "trace": "TRACE",
    "debug": "DEBUG",
    "info": "INFO",
    "warn": "WARNING",
    "warning": "WARNING",
    "error": "ERROR",
}


def resolve_level(level: str | None) -> str:
    """Map a --loglevel value onto a loguru level, defaulting to INFO."""
    if not level:
        return "INFO"
    return LEVEL_NAMES.get(level.lower(), "INFO")


def _is_registry_record(record) -> bool:
    return record["extra"].get("source") == REGISTRY_SOURCE


def _console_filter(record) -> bool:
    """Keep the embedded registry's chatter out of the console."""
    return not _is_registry_record(record)


def setup_logging(level: str = "info", *, log_file: Path | None = None) -> Logger:
    """
    Configure console logging for a mirror run.

    Registry records never reach the console; they are routed to the
    dedicated registry log by RegistryLogSink.

    Args:
        level: CLI level name (trace, debug, info, error)
        log_file: Optional file receiving the same records as the console
    """
    logger.remove()
    logger.configure(extra={"job_id": "-", "tags": [], "source": "APP"})
    console_level = resolve_level(level)

    logger.add(
        sys.stderr,
        level=console_level,
        backtrace=False,
        diagnose=False,
        filter=_console_filter,
        colorize=True,
        format=(
            "<green>{time:HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{extra[source]: <15}</cyan> | "
            "<blue>{extra[job_id]: <15}</blue> | "
            "{message}"
        ),
    )

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_file,
            level=console_level,
            backtrace=False,
            diagnose=False,
            filter=_console_filter,
            format=(
                "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
                "{level: <8} | "
                "{extra[source]: <15} | "
                "{extra[job_id]: <15} | "
                "{message}"
            ),
        )

    return logger


class RegistryLogSink:
    """
    Dedicated log destination for the local cache registry.

    Owns one loguru file sink that only accepts records bound with
    ``source="registry"``. Usable as a context manager; ``close`` is
    idempotent.
    """

    def __init__(self, path: Path, level: str = "info"):
        self.path = path
        self.level = resolve_level(level)
        self._sink_id: int | None = None

    @property
    def is_open(self) -> bool:
        return self._sink_id is not None

    def open(self) -> RegistryLogSink:
        if self._sink_id is not None:
            return self
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._sink_id = logger.add(
            self.path,
            level=self.level,
            filter=_is_registry_record,
            backtrace=False,
            diagnose=False,
            format="time=\"{time:YYYY-MM-DDTHH:mm:ss.SSSZZ}\" level={level.name} msg=\"{message}\"",
        )
        return self

    def close(self) -> None:
        if self._sink_id is None:
            return
        sink_id, self._sink_id = self._sink_id, None
        logger.remove(sink_id)

    def __enter__(self) -> RegistryLogSink:
        return self.open()

    def __exit__(self, *exc_info) -> None:
        self.close()


def get_logger(
    *,
    job_id: str | None = None,
    tags: Iterable[str] | None = None,
    source: str | None = None,
) -> Logger:
    """
    Get a logger with bound context.

    Args:
        job_id: Job identifier for tracking operations
        tags: Tags for filtering (e.g., ["batch", "copy"])
        source: Source component (e.g., "registry", "archive")

    Returns:
        Logger with bound context
    """
    extras: dict[str, object] = {}
    if job_id is not None:
        extras["job_id"] = job_id
    if tags is not None:
        extras["tags"] = list(tags)
    if source is not None:
        extras["source"] = source
    return logger.bind(**extras)


@contextmanager
def operation_context(operation: str, **details):
    """
    Context manager for tracking long-running operations with automatic timing.

    Logs operation start, completion, and failure with duration tracking.

    Example:
        with operation_context("archive", destination="/mnt/export") as log:
            log.debug("Adding blobs")
    """
    job_id = f"{operation}-{uuid.uuid4().hex[:8]}"

    with logger.contextualize(job_id=job_id, operation=operation, **details):
        start_time = time.time()
        log = logger.bind(source=operation, job_id=job_id, tags=[operation])

        log.info(f"{operation.capitalize()} started")

        try:
            yield log
            duration = time.time() - start_time
            log.success(
                f"{operation.capitalize()} completed in {duration:.2f}s"
            )
        except Exception as e:
            duration = time.time() - start_time
            log.error(
                "{} failed after {:.2f}s: {}", operation.capitalize(), duration, e
            )
            raise


class LoggerFactory:
    """
    Factory for creating domain-specific loggers with automatic context.
    """

    @staticmethod
    def for_registry() -> Logger:
        """Logger for the embedded cache registry (routed to registry.log)."""
        return logger.bind(source=REGISTRY_SOURCE, tags=["registry"])

    @staticmethod
    def for_workflow(mode: str | None = None) -> Logger:
        """Logger for the workflow orchestrator."""
        return logger.bind(source="workflow", tags=["workflow"], mode=mode or "-")

    @staticmethod
    def for_collector(phase: str) -> Logger:
        """Logger for an image collector phase (release, operator, additional)."""
        return logger.bind(source=f"{phase}-collector", tags=["collect", phase])

    @staticmethod
    def for_batch(job_id: str | None = None) -> Logger:
        """Logger for batch transfers."""
        if job_id is None:
            job_id = f"batch-{uuid.uuid4().hex[:8]}"
        return logger.bind(job_id=job_id, source="batch", tags=["batch", "copy"])

    @staticmethod
    def for_archive() -> Logger:
        """Logger for archive packaging and extraction."""
        return logger.bind(source="archive", tags=["archive"])


class EventLogger:
    """
    Structured event logger using standardized schemas.
    """

    @staticmethod
    def log_phase_timings(
        log: Logger,
        start: datetime,
        collection: datetime,
        mirror: datetime,
    ) -> None:
        """Log the wall clock of each workflow phase."""
        log.info(f"start time      : {start}")
        log.info(f"collection time : {collection}")
        log.info(f"mirror time     : {mirror}")

    @staticmethod
    def log_batch_summary(
        log: Logger, total: int, copied: int, skipped: int, failed: int
    ) -> None:
        """Log the outcome of a batch transfer."""
        log.info(
            f"Batch finished: {copied} copied, {skipped} skipped, {failed} failed of {total}",
            event_type="batch_summary",
            total=total,
            copied=copied,
            skipped=skipped,
            failed=failed,
        )
