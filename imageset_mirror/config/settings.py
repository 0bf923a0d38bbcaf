"""Constants and environment-driven defaults for mirror runs."""

from __future__ import annotations

import os
from pathlib import Path

DOCKER_PROTOCOL = "docker://"
FILE_PROTOCOL = "file://"

# Directory names - use these constants instead of hardcoding values elsewhere
WORKING_DIR = "working-dir"
LOGS_DIR = "logs"
SIGNATURES_DIR = "signatures"
RELEASE_IMAGES_DIR = "release-images"
RELEASE_IMAGE_EXTRACT_DIR = "hold-release"
OPERATOR_IMAGE_EXTRACT_DIR = "hold-operator"
CLUSTER_RESOURCES_DIR = "cluster-resources"
WORKING_DIR_LAYOUT = (
    SIGNATURES_DIR,
    RELEASE_IMAGES_DIR,
    RELEASE_IMAGE_EXTRACT_DIR,
    OPERATOR_IMAGE_EXTRACT_DIR,
)

REGISTRY_LOG_FILENAME = "registry.log"
CACHED_IMAGES_FILENAME = "cached-images.txt"

CACHE_ENV_VAR = "IMAGESET_MIRROR_CACHE"
CACHE_RELATIVE_PATH = Path(".imageset-mirror") / ".cache"

DEFAULT_PORT = 5000
DEFAULT_LOG_LEVEL = "info"
DEFAULT_RETRY_TIMES = 2
MULTI_ARCH_ALL = "all"
REGISTRY_READY_TIMEOUT_SECONDS = 10.0

ARCHIVE_PREFIX = "mirror_"
ARCHIVE_SUFFIX = ".tar"
ARCHIVE_CONFIG_NAME = "imageset-config.yaml"
DEFAULT_ARCHIVE_SIZE_GIB = 500


def resolve_cache_dir() -> Path:
    """Return the durable cache directory for the local registry.

    The IMAGESET_MIRROR_CACHE environment variable names an override root;
    otherwise the cache lives under the user's home directory.
    """
    requested = os.environ.get(CACHE_ENV_VAR, "")
    if requested:
        return Path(requested) / CACHE_RELATIVE_PATH
    return Path.home() / CACHE_RELATIVE_PATH


def strip_protocol(locator: str, protocol: str = FILE_PROTOCOL) -> str:
    if locator.startswith(protocol):
        return locator[len(protocol):]
    return locator
