"""Shared planning logic for image collectors.

A collector turns the references named in the image set configuration into
WorkItems whose source and destination depend on the workflow mode.
"""

from __future__ import annotations

from typing import Iterable, Protocol, Sequence

from imageset_mirror.config.imageset import ImageSetConfiguration
from imageset_mirror.config.settings import DOCKER_PROTOCOL
from imageset_mirror.domain import RunContext, RunOptions, WorkItem
from imageset_mirror.mirror.reference import docker_ref, parse_reference


class Collector(Protocol):
    """Produces the images of one content category."""

    phase: str

    def collect(self, ctx: RunContext) -> Sequence[WorkItem]:
        ...


def plan_item(reference: str, opts: RunOptions) -> WorkItem:
    """Build the WorkItem moving one upstream reference for the run's mode.

    Raises:
        ValueError: If the reference has no repository path
    """
    ref = parse_reference(reference)
    upstream = docker_ref(ref.registry, ref.path_with_suffix())
    cached = docker_ref(opts.local_storage_fqdn, ref.path_with_suffix())

    if opts.is_disk_to_mirror():
        target = opts.destination
        if not target.startswith(DOCKER_PROTOCOL):
            target = DOCKER_PROTOCOL + target
        destination = f"{target.rstrip('/')}/{ref.path_with_suffix()}"
        return WorkItem(source=cached, destination=destination, origin=str(ref))

    return WorkItem(source=upstream, destination=cached, origin=str(ref))


def plan_items(references: Iterable[str], opts: RunOptions) -> list[WorkItem]:
    """Plan every reference once, keeping first-seen order."""
    items: list[WorkItem] = []
    seen: set[tuple[str, str]] = set()
    for reference in references:
        item = plan_item(reference, opts)
        if item.key in seen:
            continue
        seen.add(item.key)
        items.append(item)
    return items


class ConfigCollector:
    """Collector planning a fixed list of references from the configuration."""

    phase = ""

    def __init__(self, config: ImageSetConfiguration, opts: RunOptions):
        self.config = config
        self.opts = opts

    def references(self) -> list[str]:
        raise NotImplementedError

    def collect(self, ctx: RunContext) -> tuple[WorkItem, ...]:
        ctx.raise_if_cancelled()
        return tuple(plan_items(self.references(), self.opts))
