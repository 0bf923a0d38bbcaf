"""Sequential batch copy of collected images."""

from __future__ import annotations

from typing import Sequence

from imageset_mirror.domain import RunContext, RunOptions, WorkItem
from imageset_mirror.exceptions import MirrorError, TransferError
from imageset_mirror.logging import EventLogger, LoggerFactory
from imageset_mirror.mirror import Mirror


class BatchWorker:
    """Copy every WorkItem, then report all failures at once.

    In mirror-to-disk runs images already present in the local cache are
    skipped unless the run is forced.
    """

    def __init__(self, mirror: Mirror):
        self.mirror = mirror

    def _is_cached(self, ctx: RunContext, item: WorkItem, opts: RunOptions, log) -> bool:
        if not opts.is_mirror_to_disk() or opts.force:
            return False
        try:
            return self.mirror.check(ctx, item.destination, opts)
        except MirrorError as e:
            log.debug(f"Cache lookup failed for {item.destination}, copying: {e}")
            return False

    def worker(
        self, ctx: RunContext, items: Sequence[WorkItem], opts: RunOptions
    ) -> None:
        """Transfer all items.

        Raises:
            TransferError: If at least one item failed; every item is attempted
            InterruptedError: If the run was cancelled
        """
        log = LoggerFactory.for_batch()
        total = len(items)
        copied = 0
        skipped = 0
        failures: list[tuple[str, str]] = []

        for index, item in enumerate(items, start=1):
            ctx.raise_if_cancelled()
            if self._is_cached(ctx, item, opts, log):
                skipped += 1
                log.debug(f"({index}/{total}) already cached: {item.destination}")
                continue
            log.info(f"({index}/{total}) {item.source} -> {item.destination}")
            try:
                self.mirror.copy(ctx, item.source, item.destination, opts)
            except RuntimeError as e:
                log.error(f"({index}/{total}) failed {item.source}: {e}")
                failures.append((item.source, str(e)))
                continue
            copied += 1

        EventLogger.log_batch_summary(log, total, copied, skipped, len(failures))
        if failures:
            raise TransferError(failures)
