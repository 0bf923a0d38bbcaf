"""Release image collector."""

from __future__ import annotations

from imageset_mirror.collectors.base import ConfigCollector
from imageset_mirror.domain import RunContext, WorkItem
from imageset_mirror.logging import LoggerFactory

log = LoggerFactory.for_collector("release")


class ReleaseCollector(ConfigCollector):
    """Plans the platform release images named under mirror.platform.releases."""

    phase = "release"

    def references(self) -> list[str]:
        return list(self.config.releases)

    def collect(self, ctx: RunContext) -> tuple[WorkItem, ...]:
        items = super().collect(ctx)
        log.info(f"collected {len(items)} release image(s)")
        return items
