"""Tests for the local cache registry HTTP API.

Tests cover:
- API version probe and response headers
- Blob uploads (monolithic, chunked, cross-repository mount)
- Manifest push and pull by tag and digest
- Error documents for unknown content and digest mismatches
- Storage health endpoint
"""

from __future__ import annotations

import dataclasses
import json

import pytest

from imageset_mirror.registry.config import parse_config, render_config
from imageset_mirror.registry.server import HEALTH_KEY, build_app
from imageset_mirror.registry.storage import DOCKER_MANIFEST_V2, compute_digest


@pytest.fixture
def registry_app(cache_storage):
    config = parse_config(render_config(cache_storage.root_directory, 5000, "info"))
    return build_app(config, cache_storage)


def _manifest(config_digest: str, layer_digest: str) -> bytes:
    return json.dumps(
        {
            "schemaVersion": 2,
            "mediaType": DOCKER_MANIFEST_V2,
            "config": {"digest": config_digest, "size": 2},
            "layers": [{"digest": layer_digest, "size": 5}],
        }
    ).encode()


class TestBase:
    """Test the version probe."""

    @pytest.mark.asyncio
    async def test_version_probe(self, aiohttp_client, registry_app):
        """Test /v2/ answers with the distribution API version header."""
        client = await aiohttp_client(registry_app)

        resp = await client.get("/v2/")

        assert resp.status == 200
        assert resp.headers["Docker-Distribution-API-Version"] == "registry/2.0"
        assert resp.headers["X-Content-Type-Options"] == "nosniff"


class TestPushPull:
    """Test pushing an image and pulling it back."""

    @pytest.mark.asyncio
    async def test_round_trip(self, aiohttp_client, registry_app):
        """Test blobs and manifest pushed to the registry can be pulled."""
        client = await aiohttp_client(registry_app)
        config_blob = b"{}"
        layer_blob = b"layer"
        config_digest = compute_digest(config_blob)
        layer_digest = compute_digest(layer_blob)

        # Monolithic upload
        resp = await client.post(
            f"/v2/ns/img/blobs/uploads/?digest={config_digest}", data=config_blob
        )
        assert resp.status == 201

        # Chunked upload
        resp = await client.post("/v2/ns/img/blobs/uploads/")
        assert resp.status == 202
        location = resp.headers["Location"]
        resp = await client.patch(location, data=layer_blob)
        assert resp.status == 202
        assert resp.headers["Range"] == "0-4"
        resp = await client.put(f"{location}?digest={layer_digest}")
        assert resp.status == 201
        assert resp.headers["Docker-Content-Digest"] == layer_digest

        manifest = _manifest(config_digest, layer_digest)
        resp = await client.put(
            "/v2/ns/img/manifests/v1",
            data=manifest,
            headers={"Content-Type": DOCKER_MANIFEST_V2},
        )
        assert resp.status == 201
        manifest_digest = resp.headers["Docker-Content-Digest"]
        assert manifest_digest == compute_digest(manifest)

        resp = await client.get("/v2/ns/img/manifests/v1")
        assert resp.status == 200
        assert await resp.read() == manifest
        assert resp.headers["Content-Type"] == DOCKER_MANIFEST_V2

        resp = await client.head(f"/v2/ns/img/manifests/{manifest_digest}")
        assert resp.status == 200

        resp = await client.get(f"/v2/ns/img/blobs/{layer_digest}")
        assert resp.status == 200
        assert await resp.read() == layer_blob

        resp = await client.get("/v2/ns/img/tags/list")
        assert await resp.json() == {"name": "ns/img", "tags": ["v1"]}

        resp = await client.get("/v2/_catalog")
        assert await resp.json() == {"repositories": ["ns/img"]}

    @pytest.mark.asyncio
    async def test_cross_repository_mount(self, aiohttp_client, registry_app, cache_storage):
        """Test a blob is linked into another repository without upload."""
        digest = cache_storage.put_blob("ns/a", b"shared")
        client = await aiohttp_client(registry_app)

        resp = await client.post(f"/v2/ns/b/blobs/uploads/?mount={digest}&from=ns/a")

        assert resp.status == 201
        assert cache_storage.repository_has_blob("ns/b", digest)

    @pytest.mark.asyncio
    async def test_upload_status_and_cancel(self, aiohttp_client, registry_app):
        client = await aiohttp_client(registry_app)
        resp = await client.post("/v2/ns/img/blobs/uploads/")
        location = resp.headers["Location"]

        resp = await client.get(location)
        assert resp.status == 204

        resp = await client.delete(location)
        assert resp.status == 204

        resp = await client.get(location)
        assert resp.status == 404


class TestErrors:
    """Test distribution error documents."""

    @pytest.mark.asyncio
    async def test_digest_mismatch(self, aiohttp_client, registry_app):
        """Test completing an upload with the wrong digest is rejected."""
        client = await aiohttp_client(registry_app)
        resp = await client.post("/v2/ns/img/blobs/uploads/")
        location = resp.headers["Location"]

        resp = await client.put(f"{location}?digest={compute_digest(b'other')}", data=b"data")

        assert resp.status == 400
        body = await resp.json()
        assert body["errors"][0]["code"] == "DIGEST_INVALID"

    @pytest.mark.asyncio
    async def test_missing_digest_parameter(self, aiohttp_client, registry_app):
        client = await aiohttp_client(registry_app)
        resp = await client.post("/v2/ns/img/blobs/uploads/")

        resp = await client.put(resp.headers["Location"], data=b"data")

        assert resp.status == 400

    @pytest.mark.asyncio
    async def test_unknown_manifest(self, aiohttp_client, registry_app):
        client = await aiohttp_client(registry_app)

        resp = await client.get("/v2/ns/img/manifests/v1")

        assert resp.status == 404
        body = await resp.json()
        assert body["errors"][0]["code"] == "MANIFEST_UNKNOWN"

    @pytest.mark.asyncio
    async def test_unknown_blob(self, aiohttp_client, registry_app):
        client = await aiohttp_client(registry_app)

        resp = await client.get(f"/v2/ns/img/blobs/{compute_digest(b'x')}")

        assert resp.status == 404
        body = await resp.json()
        assert body["errors"][0]["code"] == "BLOB_UNKNOWN"

    @pytest.mark.asyncio
    async def test_unknown_repository_tags(self, aiohttp_client, registry_app):
        client = await aiohttp_client(registry_app)

        resp = await client.get("/v2/missing/tags/list")

        assert resp.status == 404


class TestHealth:
    """Test the storage health endpoint."""

    @pytest.mark.asyncio
    async def test_healthy(self, aiohttp_client, registry_app):
        client = await aiohttp_client(registry_app)

        resp = await client.get("/debug/health")

        assert resp.status == 200

    @pytest.mark.asyncio
    async def test_unhealthy_after_threshold(self, aiohttp_client, cache_storage):
        """Test three consecutive failed checks report 503."""
        config = parse_config(render_config(cache_storage.root_directory, 5000, "info"))
        app = build_app(dataclasses.replace(config, health_enabled=False), cache_storage)
        client = await aiohttp_client(app)
        health = app[HEALTH_KEY]
        for _ in range(3):
            health.record("storage root missing")

        resp = await client.get("/debug/health")

        assert resp.status == 503
        assert await resp.json() == {"storagedriver_filesystem": "storage root missing"}
