"""Cluster resources describing where mirrored images now live."""

from __future__ import annotations

from pathlib import Path
from typing import Sequence

import yaml

from imageset_mirror.config.settings import CLUSTER_RESOURCES_DIR
from imageset_mirror.domain import ContentType, RunContext, RunOptions, WorkItem
from imageset_mirror.exceptions import MirrorError
from imageset_mirror.logging import get_logger
from imageset_mirror.mirror.reference import parse_reference

IDMS_FILENAME = "idms-imageset-mirror.yaml"
IDMS_API_VERSION = "config.openshift.io/v1"
IDMS_KIND = "ImageDigestMirrorSet"

log = get_logger(source=__name__)


def _repository(reference: str) -> str:
    ref = parse_reference(reference)
    return f"{ref.registry}/{ref.path}"


def build_idms(items: Sequence[WorkItem]) -> list[dict]:
    """Group upstream repositories by content type into IDMS documents."""
    grouped: dict[str, dict[str, list[str]]] = {}
    for item in items:
        if not item.origin:
            continue
        kind = item.content_type.value if item.content_type else "image"
        source = _repository(item.origin)
        mirror = _repository(item.destination)
        mirrors = grouped.setdefault(kind, {}).setdefault(source, [])
        if mirror not in mirrors:
            mirrors.append(mirror)

    documents = []
    for kind in [c.value for c in ContentType] + ["image"]:
        if kind not in grouped:
            continue
        documents.append(
            {
                "apiVersion": IDMS_API_VERSION,
                "kind": IDMS_KIND,
                "metadata": {"name": f"idms-{kind}-0"},
                "spec": {
                    "imageDigestMirrors": [
                        {"source": source, "mirrors": mirrors}
                        for source, mirrors in sorted(grouped[kind].items())
                    ]
                },
            }
        )
    return documents


class ClusterResourcesGenerator:
    """Writes ImageDigestMirrorSet manifests into the working directory."""

    def __init__(self, opts: RunOptions):
        self.opts = opts

    @property
    def output_dir(self) -> Path:
        return self.opts.working_dir / CLUSTER_RESOURCES_DIR

    def idms_generator(self, ctx: RunContext, items: Sequence[WorkItem]) -> Path | None:
        """Write the IDMS file for the mirrored items and return its path.

        Raises:
            MirrorError: If the file cannot be written
        """
        ctx.raise_if_cancelled()
        documents = build_idms(items)
        if not documents:
            log.info("no images mirrored, skipping cluster resources")
            return None
        path = self.output_dir / IDMS_FILENAME
        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            with path.open("w", encoding="utf-8") as fh:
                yaml.safe_dump_all(documents, fh, sort_keys=False)
        except OSError as e:
            raise MirrorError(f"unable to write cluster resources to {path}: {e}") from e
        log.info(f"{IDMS_KIND} written to {path}")
        return path
