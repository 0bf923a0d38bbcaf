"""Fold the output of every collector into one ordered list of WorkItems."""

from __future__ import annotations

import dataclasses
from typing import Callable, Sequence

from imageset_mirror.collectors.base import Collector
from imageset_mirror.domain import ContentType, RunContext, WorkItem
from imageset_mirror.exceptions import CollectionError
from imageset_mirror.logging import LoggerFactory

log = LoggerFactory.for_workflow()


def merge_images(
    collected: Sequence[WorkItem],
    batch: Sequence[WorkItem],
    content_type: ContentType,
) -> tuple[WorkItem, ...]:
    """Return collected followed by batch, each batch item tagged with content_type."""
    tagged = tuple(dataclasses.replace(item, content_type=content_type) for item in batch)
    return tuple(collected) + tagged


class CollectionAggregator:
    """Run the release, operator and additional collectors in that order.

    The first failing collector stops collection: the abort hook runs, then a
    CollectionError carrying the images gathered so far is raised.
    """

    def __init__(
        self,
        release: Collector,
        operator: Collector,
        additional: Collector,
        on_abort: Callable[[], None] | None = None,
    ):
        self.phases = (
            (release, ContentType.RELEASE),
            (operator, ContentType.OPERATOR),
            (additional, ContentType.ADDITIONAL),
        )
        self.on_abort = on_abort

    def collect_all(self, ctx: RunContext) -> list[WorkItem]:
        collected: tuple[WorkItem, ...] = ()
        for collector, content_type in self.phases:
            try:
                batch = collector.collect(ctx)
            except Exception as exc:
                log.error(f"[{content_type.value} collector] {exc}")
                if self.on_abort is not None:
                    self.on_abort()
                raise CollectionError(content_type.value, exc, collected) from exc
            collected = merge_images(collected, batch, content_type)
        log.info(f"collected {len(collected)} image(s) in total")
        return list(collected)
