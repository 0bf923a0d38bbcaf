"""Image set configuration loading.

The image set configuration is the declarative YAML document naming what to
mirror::

    kind: ImageSetConfiguration
    apiVersion: mirror.openshift.io/v1alpha2
    archiveSize: 4
    mirror:
      platform:
        releases:
          - image: quay.io/openshift-release-dev/ocp-release:4.15.0-x86_64
      operators:
        - catalog: registry.redhat.io/redhat/redhat-operator-index:v4.15
      additionalImages:
        - name: registry.redhat.io/ubi9/ubi:latest
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Optional

import yaml

from imageset_mirror.exceptions import ConfigError

KIND = "ImageSetConfiguration"


@dataclass(frozen=True)
class OperatorCatalog:
    catalog: str
    packages: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class ImageSetConfiguration:
    releases: List[str] = field(default_factory=list)
    operators: List[OperatorCatalog] = field(default_factory=list)
    additional_images: List[str] = field(default_factory=list)
    archive_size_gib: Optional[int] = None
    api_version: str = "mirror.openshift.io/v1alpha2"


def _as_list(value: Any, what: str, path: str) -> list:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ConfigError(path, f"{what} must be a list")
    return value


def _require_str(entry: Any, key: str, what: str, path: str) -> str:
    if not isinstance(entry, dict) or not isinstance(entry.get(key), str) or not entry[key]:
        raise ConfigError(path, f"every {what} entry needs a '{key}' string")
    return entry[key]


def parse_config(payload: Any, path: str = "<memory>") -> ImageSetConfiguration:
    """Build an ImageSetConfiguration from an already decoded YAML document.

    Raises:
        ConfigError: If the document is not an ImageSetConfiguration or an
            entry is malformed
    """
    if not isinstance(payload, dict):
        raise ConfigError(path, "document must be a mapping")
    if payload.get("kind") != KIND:
        raise ConfigError(path, f"kind must be {KIND}, got {payload.get('kind')!r}")

    mirror = payload.get("mirror") or {}
    if not isinstance(mirror, dict):
        raise ConfigError(path, "mirror must be a mapping")

    platform = mirror.get("platform") or {}
    if not isinstance(platform, dict):
        raise ConfigError(path, "mirror.platform must be a mapping")
    releases = [
        _require_str(entry, "image", "platform.releases", path)
        for entry in _as_list(platform.get("releases"), "platform.releases", path)
    ]

    operators = []
    for entry in _as_list(mirror.get("operators"), "operators", path):
        catalog = _require_str(entry, "catalog", "operators", path)
        packages = [
            _require_str(pkg, "name", "operators.packages", path)
            for pkg in _as_list(entry.get("packages"), "operators.packages", path)
        ]
        operators.append(OperatorCatalog(catalog=catalog, packages=packages))

    additional = [
        _require_str(entry, "name", "additionalImages", path)
        for entry in _as_list(mirror.get("additionalImages"), "additionalImages", path)
    ]

    archive_size = payload.get("archiveSize")
    if archive_size is not None:
        if isinstance(archive_size, bool) or not isinstance(archive_size, int) or archive_size <= 0:
            raise ConfigError(path, "archiveSize must be a positive integer (GiB)")

    return ImageSetConfiguration(
        releases=releases,
        operators=operators,
        additional_images=additional,
        archive_size_gib=archive_size,
        api_version=str(payload.get("apiVersion", "mirror.openshift.io/v1alpha2")),
    )


def read_config(path: str | Path) -> ImageSetConfiguration:
    """Read and validate the image set configuration file.

    Raises:
        ConfigError: If the file cannot be read or parsed
    """
    path = Path(path)
    try:
        with path.open("r", encoding="utf-8") as fh:
            payload = yaml.safe_load(fh)
    except OSError as exc:
        raise ConfigError(str(path), str(exc)) from exc
    except yaml.YAMLError as exc:
        raise ConfigError(str(path), f"invalid YAML: {exc}") from exc
    return parse_config(payload, str(path))
