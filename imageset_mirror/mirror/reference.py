"""Splitting image references into registry, repository path and tag/digest.

Only what planning and cache lookups need; syntax validation is left to the
copy tool.
"""

from __future__ import annotations

from dataclasses import dataclass

from imageset_mirror.config.settings import DOCKER_PROTOCOL

DEFAULT_REGISTRY = "docker.io"


@dataclass(frozen=True)
class ImageReference:
    registry: str
    path: str  # repository path without the registry host
    tag: str = ""
    digest: str = ""

    @property
    def suffix(self) -> str:
        if self.digest:
            return f"@{self.digest}"
        return f":{self.tag or 'latest'}"

    @property
    def reference(self) -> str:
        """Tag or digest as used in /v2/<name>/manifests/<reference>."""
        return self.digest or self.tag or "latest"

    def path_with_suffix(self) -> str:
        return f"{self.path}{self.suffix}"

    def __str__(self) -> str:
        return f"{self.registry}/{self.path}{self.suffix}"


def strip_transport(ref: str) -> str:
    if "://" in ref:
        return ref.split("://", 1)[1]
    return ref


def _looks_like_registry(component: str) -> bool:
    return "." in component or ":" in component or component == "localhost"


def parse_reference(ref: str) -> ImageReference:
    """Parse ``[docker://]registry/path[:tag][@digest]``.

    Raises:
        ValueError: If the reference has no repository path
    """
    remainder = strip_transport(ref).strip()
    digest = ""
    if "@" in remainder:
        remainder, digest = remainder.split("@", 1)
    tag = ""
    last_slash = remainder.rfind("/")
    last_colon = remainder.rfind(":")
    if last_colon > last_slash:
        remainder, tag = remainder[:last_colon], remainder[last_colon + 1:]

    parts = remainder.split("/")
    if len(parts) > 1 and _looks_like_registry(parts[0]):
        registry, path = parts[0], "/".join(parts[1:])
    else:
        registry, path = DEFAULT_REGISTRY, remainder
        if "/" not in path:
            path = f"library/{path}"
    if not path:
        raise ValueError(f"image reference {ref!r} has no repository path")
    return ImageReference(registry=registry, path=path, tag=tag, digest=digest)


def docker_ref(registry: str, path_with_suffix: str) -> str:
    return f"{DOCKER_PROTOCOL}{registry.rstrip('/')}/{path_with_suffix}"
