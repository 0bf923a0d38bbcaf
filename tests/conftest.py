"""
Pytest configuration and shared fixtures for imageset-mirror tests.

This module provides common fixtures and utilities used across all test modules.
"""

import json
import socket
from pathlib import Path
from typing import Any, Callable, Dict

import pytest

from imageset_mirror.domain import RunContext, RunOptions, WorkflowMode
from imageset_mirror.registry.storage import DOCKER_MANIFEST_V2, FilesystemStorage


# ==============================================================================
# Run Fixtures
# ==============================================================================


@pytest.fixture
def ctx() -> RunContext:
    """Fresh, not cancelled run context."""
    return RunContext()


@pytest.fixture
def make_options(tmp_path) -> Callable[..., RunOptions]:
    """
    Factory fixture building RunOptions rooted in tmp_path.

    Keyword arguments override any field.
    """

    def _make(**overrides: Any) -> RunOptions:
        root = overrides.pop("root_dir", tmp_path / "archive")
        values: Dict[str, Any] = {
            "destination": f"file://{root}",
            "mode": WorkflowMode.MIRROR_TO_DISK,
            "root_dir": root,
            "working_dir": root / "working-dir",
            "cache_dir": tmp_path / "cache",
            "config_path": str(tmp_path / "imageset-config.yaml"),
        }
        values.update(overrides)
        return RunOptions(**values)

    return _make


# ==============================================================================
# Configuration Fixtures
# ==============================================================================


IMAGESET_CONFIG = """\
kind: ImageSetConfiguration
apiVersion: mirror.openshift.io/v1alpha2
archiveSize: 1
mirror:
  platform:
    releases:
      - image: quay.io/openshift-release-dev/ocp-release:4.15.0-x86_64
  operators:
    - catalog: registry.redhat.io/redhat/redhat-operator-index:v4.15
      packages:
        - name: aws-load-balancer-operator
  additionalImages:
    - name: registry.redhat.io/ubi9/ubi:latest
"""


@pytest.fixture
def imageset_config_file(tmp_path) -> Path:
    """Image set configuration naming one image per collector."""
    path = tmp_path / "imageset-config.yaml"
    path.write_text(IMAGESET_CONFIG, encoding="utf-8")
    return path


# ==============================================================================
# Registry Fixtures
# ==============================================================================


@pytest.fixture
def free_port() -> int:
    """A TCP port nothing listens on right now."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def _store_image(
    storage: FilesystemStorage, name: str, tag: str, layer: bytes = b"layer-data"
) -> Dict[str, str]:
    """
    Store a minimal image (config, one layer, manifest) under name:tag.

    Returns:
        Dict with the config, layer and manifest digests.
    """
    config_digest = storage.put_blob(name, json.dumps({"architecture": "amd64"}).encode())
    layer_digest = storage.put_blob(name, layer)
    manifest = json.dumps(
        {
            "schemaVersion": 2,
            "mediaType": DOCKER_MANIFEST_V2,
            "config": {"digest": config_digest, "size": 0},
            "layers": [{"digest": layer_digest, "size": len(layer)}],
        }
    ).encode()
    manifest_digest = storage.put_manifest(name, tag, manifest)
    return {"config": config_digest, "layer": layer_digest, "manifest": manifest_digest}


@pytest.fixture
def store_image() -> Callable[..., Dict[str, str]]:
    """Helper storing a minimal image into a FilesystemStorage."""
    return _store_image


@pytest.fixture
def cache_storage(tmp_path) -> FilesystemStorage:
    """Empty filesystem storage rooted at tmp_path/cache."""
    root = tmp_path / "cache"
    root.mkdir()
    return FilesystemStorage(root)
