"""Operator catalog collector."""

from __future__ import annotations

from imageset_mirror.collectors.base import ConfigCollector
from imageset_mirror.domain import RunContext, WorkItem
from imageset_mirror.logging import LoggerFactory

log = LoggerFactory.for_collector("operator")


class OperatorCollector(ConfigCollector):
    """Plans the catalog images named under mirror.operators.

    Package filtering is recorded in the configuration but the catalog is
    mirrored as a whole; bundle resolution needs the catalog contents.
    """

    phase = "operator"

    def references(self) -> list[str]:
        return [operator.catalog for operator in self.config.operators]

    def collect(self, ctx: RunContext) -> tuple[WorkItem, ...]:
        items = super().collect(ctx)
        for operator in self.config.operators:
            if operator.packages:
                log.debug(
                    f"{operator.catalog}: packages {', '.join(operator.packages)} "
                    "are mirrored with the full catalog"
                )
        log.info(f"collected {len(items)} operator catalog image(s)")
        return items
