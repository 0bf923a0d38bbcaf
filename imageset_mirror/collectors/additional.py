"""Additional image collector."""

from __future__ import annotations

from imageset_mirror.collectors.base import ConfigCollector
from imageset_mirror.domain import RunContext, WorkItem
from imageset_mirror.logging import LoggerFactory

log = LoggerFactory.for_collector("additional")


class AdditionalCollector(ConfigCollector):
    phase = "additional"

    def references(self) -> list[str]:
        return list(self.config.additional_images)

    def collect(self, ctx: RunContext) -> tuple[WorkItem, ...]:
        items = super().collect(ctx)
        log.info(f"collected {len(items)} additional image(s)")
        return items
