"""HTTP API of the local cache registry.

Implements the part of the Docker Registry HTTP API V2 that image copy tools
use to push to and pull from a registry, backed by FilesystemStorage.
"""

from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass
from typing import Any

from aiohttp import web

from imageset_mirror.logging import LoggerFactory
from imageset_mirror.registry.config import RegistryConfig
from imageset_mirror.registry.storage import (
    BlobUnknownError,
    DigestInvalidError,
    FilesystemStorage,
    ManifestUnknownError,
    NameInvalidError,
    UploadUnknownError,
    is_digest,
)

API_VERSION_HEADER = "Docker-Distribution-API-Version"
API_VERSION = "registry/2.0"
CHUNK_SIZE = 1024 * 1024  # 1MB chunks
MAX_MANIFEST_BYTES = 4 * 1024 * 1024

log = LoggerFactory.for_registry()


@dataclass
class HealthState:
    """Result of the periodic storage driver health check."""

    threshold: int
    consecutive_failures: int = 0
    last_error: str = ""

    @property
    def healthy(self) -> bool:
        return self.consecutive_failures < self.threshold

    def record(self, error: str | None) -> None:
        if error is None:
            self.consecutive_failures = 0
            self.last_error = ""
        else:
            self.consecutive_failures += 1
            self.last_error = error


STORAGE_KEY: web.AppKey[FilesystemStorage] = web.AppKey("storage", FilesystemStorage)
CONFIG_KEY: web.AppKey[RegistryConfig] = web.AppKey("registry_config", RegistryConfig)
HEALTH_KEY: web.AppKey[HealthState] = web.AppKey("health", HealthState)
HEALTH_TASK_KEY: web.AppKey[asyncio.Task] = web.AppKey("health_task", asyncio.Task)


def _error(status: int, code: str, message: str, detail: Any = None) -> web.Response:
    payload = {"errors": [{"code": code, "message": message, "detail": detail or {}}]}
    return web.json_response(payload, status=status)


def _storage(request: web.Request) -> FilesystemStorage:
    return request.app[STORAGE_KEY]


def _upload_location(name: str, upload_id: str) -> str:
    return f"/v2/{name}/blobs/uploads/{upload_id}"


@web.middleware
async def _error_middleware(request: web.Request, handler):
    """Translate storage errors into distribution error documents."""
    try:
        response = await handler(request)
    except NameInvalidError as exc:
        response = _error(400, "NAME_INVALID", str(exc), {"name": exc.name})
    except BlobUnknownError as exc:
        response = _error(404, "BLOB_UNKNOWN", str(exc), {"digest": exc.digest})
    except ManifestUnknownError as exc:
        response = _error(404, "MANIFEST_UNKNOWN", str(exc), {"reference": exc.reference})
    except UploadUnknownError as exc:
        response = _error(404, "BLOB_UPLOAD_UNKNOWN", str(exc), {"uuid": exc.upload_id})
    except DigestInvalidError as exc:
        response = _error(400, "DIGEST_INVALID", str(exc), {"digest": exc.expected})
    except web.HTTPException:
        raise
    except Exception as exc:
        log.error(f"{request.method} {request.path} failed: {exc}")
        response = _error(500, "UNKNOWN", "internal server error")
    log.debug(f"{request.method} {request.path} -> {response.status}")
    return response


async def _add_headers(request: web.Request, response: web.StreamResponse) -> None:
    response.headers[API_VERSION_HEADER] = API_VERSION
    config = request.app.get(CONFIG_KEY)
    if config is None:
        return
    for header, value in config.headers.items():
        if isinstance(value, list):
            value = ", ".join(str(item) for item in value)
        response.headers[header] = str(value)


async def _stream_into_upload(
    request: web.Request, name: str, upload_id: str
) -> int:
    storage = _storage(request)
    size = storage.upload_size(name, upload_id)
    async for chunk in request.content.iter_chunked(CHUNK_SIZE):
        size = storage.append_upload(name, upload_id, chunk)
    return size


# ==============================================================================
# Handlers
# ==============================================================================


async def handle_base(request: web.Request) -> web.Response:
    return web.json_response({})


async def handle_health(request: web.Request) -> web.Response:
    health = request.app[HEALTH_KEY]
    if health.healthy:
        return web.json_response({})
    return web.json_response(
        {"storagedriver_filesystem": health.last_error or "unhealthy"}, status=503
    )


async def handle_catalog(request: web.Request) -> web.Response:
    return web.json_response({"repositories": _storage(request).list_repositories()})


async def handle_tags_list(request: web.Request) -> web.Response:
    name = request.match_info["name"]
    try:
        tags = _storage(request).list_tags(name)
    except ManifestUnknownError:
        return _error(404, "NAME_UNKNOWN", f"repository name not known: {name}")
    return web.json_response({"name": name, "tags": tags})


async def handle_get_manifest(request: web.Request) -> web.Response:
    name = request.match_info["name"]
    reference = request.match_info["reference"]
    payload, digest, media_type = _storage(request).get_manifest(name, reference)
    return web.Response(
        body=payload,
        headers={
            "Content-Type": media_type,
            "Docker-Content-Digest": digest,
            "ETag": f'"{digest}"',
        },
    )


async def handle_put_manifest(request: web.Request) -> web.Response:
    name = request.match_info["name"]
    reference = request.match_info["reference"]
    payload = bytearray()
    async for chunk in request.content.iter_chunked(CHUNK_SIZE):
        payload.extend(chunk)
        if len(payload) > MAX_MANIFEST_BYTES:
            return _error(400, "MANIFEST_INVALID", "manifest too large")
    digest = _storage(request).put_manifest(name, reference, bytes(payload))
    log.info(f"stored manifest {name}:{reference} ({digest})")
    return web.Response(
        status=201,
        headers={
            "Location": f"/v2/{name}/manifests/{digest}",
            "Docker-Content-Digest": digest,
        },
    )


async def handle_get_blob(request: web.Request) -> web.StreamResponse:
    name = request.match_info["name"]
    digest = request.match_info["digest"]
    path = _storage(request).open_blob(name, digest)
    return web.FileResponse(
        path,
        headers={
            "Content-Type": "application/octet-stream",
            "Docker-Content-Digest": digest,
        },
    )


async def handle_start_upload(request: web.Request) -> web.Response:
    name = request.match_info["name"]
    storage = _storage(request)

    mount = request.query.get("mount")
    from_name = request.query.get("from")
    if mount and from_name and is_digest(mount):
        if storage.mount_blob(name, mount, from_name):
            return web.Response(
                status=201,
                headers={
                    "Location": f"/v2/{name}/blobs/{mount}",
                    "Docker-Content-Digest": mount,
                },
            )

    upload_id = storage.start_upload(name)
    digest = request.query.get("digest")
    if digest:
        # Monolithic upload
        await _stream_into_upload(request, name, upload_id)
        storage.finish_upload(name, upload_id, digest)
        return web.Response(
            status=201,
            headers={
                "Location": f"/v2/{name}/blobs/{digest}",
                "Docker-Content-Digest": digest,
            },
        )

    return web.Response(
        status=202,
        headers={
            "Location": _upload_location(name, upload_id),
            "Range": "0-0",
            "Docker-Upload-UUID": upload_id,
        },
    )


async def handle_patch_upload(request: web.Request) -> web.Response:
    name = request.match_info["name"]
    upload_id = request.match_info["uuid"]
    size = await _stream_into_upload(request, name, upload_id)
    return web.Response(
        status=202,
        headers={
            "Location": _upload_location(name, upload_id),
            "Range": f"0-{max(size - 1, 0)}",
            "Docker-Upload-UUID": upload_id,
        },
    )


async def handle_upload_status(request: web.Request) -> web.Response:
    name = request.match_info["name"]
    upload_id = request.match_info["uuid"]
    size = _storage(request).upload_size(name, upload_id)
    return web.Response(
        status=204,
        headers={
            "Location": _upload_location(name, upload_id),
            "Range": f"0-{max(size - 1, 0)}",
            "Docker-Upload-UUID": upload_id,
        },
    )


async def handle_put_upload(request: web.Request) -> web.Response:
    name = request.match_info["name"]
    upload_id = request.match_info["uuid"]
    digest = request.query.get("digest")
    if not digest:
        return _error(400, "DIGEST_INVALID", "digest parameter missing")
    await _stream_into_upload(request, name, upload_id)
    _storage(request).finish_upload(name, upload_id, digest)
    log.debug(f"committed blob {digest} to {name}")
    return web.Response(
        status=201,
        headers={
            "Location": f"/v2/{name}/blobs/{digest}",
            "Docker-Content-Digest": digest,
        },
    )


async def handle_delete_upload(request: web.Request) -> web.Response:
    name = request.match_info["name"]
    upload_id = request.match_info["uuid"]
    _storage(request).cancel_upload(name, upload_id)
    return web.Response(status=204)


# ==============================================================================
# Application
# ==============================================================================


async def _health_loop(app: web.Application) -> None:
    config = app[CONFIG_KEY]
    storage = app[STORAGE_KEY]
    health = app[HEALTH_KEY]
    while True:
        try:
            storage.check_health()
        except OSError as exc:
            health.record(str(exc))
            log.warning(f"storage health check failed: {exc}")
        else:
            health.record(None)
        await asyncio.sleep(config.health_interval_seconds)


async def _start_health_checks(app: web.Application) -> None:
    if app[CONFIG_KEY].health_enabled:
        app[HEALTH_TASK_KEY] = asyncio.create_task(_health_loop(app))


async def _stop_health_checks(app: web.Application) -> None:
    task = app.get(HEALTH_TASK_KEY)
    if task is None:
        return
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task


def build_app(config: RegistryConfig, storage: FilesystemStorage | None = None) -> web.Application:
    """Create the registry web application for a configuration."""
    app = web.Application(middlewares=[_error_middleware])
    app[CONFIG_KEY] = config
    app[STORAGE_KEY] = storage or FilesystemStorage(config.root_directory)
    app[HEALTH_KEY] = HealthState(threshold=config.health_threshold)
    app.on_response_prepare.append(_add_headers)
    app.on_startup.append(_start_health_checks)
    app.on_cleanup.append(_stop_health_checks)

    name = "{name:[a-z0-9]+(?:[._/-]+[a-z0-9]+)*}"
    app.router.add_get("/v2/", handle_base)
    app.router.add_get("/v2/_catalog", handle_catalog)
    app.router.add_get("/debug/health", handle_health)
    app.router.add_get(f"/v2/{name}/tags/list", handle_tags_list)
    app.router.add_post(f"/v2/{name}/blobs/uploads/", handle_start_upload)
    app.router.add_get(f"/v2/{name}/blobs/uploads/{{uuid}}", handle_upload_status)
    app.router.add_patch(f"/v2/{name}/blobs/uploads/{{uuid}}", handle_patch_upload)
    app.router.add_put(f"/v2/{name}/blobs/uploads/{{uuid}}", handle_put_upload)
    app.router.add_delete(f"/v2/{name}/blobs/uploads/{{uuid}}", handle_delete_upload)
    app.router.add_get(f"/v2/{name}/blobs/{{digest}}", handle_get_blob)
    app.router.add_get(f"/v2/{name}/manifests/{{reference}}", handle_get_manifest)
    app.router.add_put(f"/v2/{name}/manifests/{{reference}}", handle_put_manifest)
    return app
