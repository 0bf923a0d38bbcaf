"""Filesystem storage for the local cache registry.

Follows the on-disk layout of distribution's filesystem driver so a cache
written here can be served by a stock registry and vice versa:

    <root>/docker/registry/v2/
        blobs/sha256/<first two hex>/<hex>/data
        repositories/<name>/
            _layers/sha256/<hex>/link
            _manifests/revisions/sha256/<hex>/link
            _manifests/tags/<tag>/current/link
            _manifests/tags/<tag>/index/sha256/<hex>/link
            _uploads/<uuid>/data
"""

from __future__ import annotations

import hashlib
import json
import os
import re
import shutil
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

REGISTRY_ROOT = Path("docker") / "registry" / "v2"

DIGEST_PATTERN = re.compile(r"^sha256:[a-f0-9]{64}$")
NAME_COMPONENT = re.compile(r"^[a-z0-9]+(?:(?:[._]|__|[-]*)[a-z0-9]+)*$")
TAG_PATTERN = re.compile(r"^[\w][\w.-]{0,127}$")

OCI_MANIFEST = "application/vnd.oci.image.manifest.v1+json"
OCI_INDEX = "application/vnd.oci.image.index.v1+json"
DOCKER_MANIFEST_V2 = "application/vnd.docker.distribution.manifest.v2+json"
DOCKER_MANIFEST_LIST = "application/vnd.docker.distribution.manifest.list.v2+json"

CHUNK_SIZE = 1024 * 1024  # 1MB chunks


class StorageError(Exception):
    """Base exception for registry storage errors."""


class BlobUnknownError(StorageError):
    def __init__(self, digest: str):
        self.digest = digest
        super().__init__(f"blob unknown: {digest}")


class ManifestUnknownError(StorageError):
    def __init__(self, name: str, reference: str):
        self.name = name
        self.reference = reference
        super().__init__(f"manifest unknown: {name}:{reference}")


class UploadUnknownError(StorageError):
    def __init__(self, upload_id: str):
        self.upload_id = upload_id
        super().__init__(f"blob upload unknown: {upload_id}")


class DigestInvalidError(StorageError):
    def __init__(self, expected: str, actual: str = ""):
        self.expected = expected
        self.actual = actual
        msg = f"digest invalid: {expected}"
        if actual:
            msg += f" (computed {actual})"
        super().__init__(msg)


class NameInvalidError(StorageError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"invalid repository name: {name}")


def is_digest(reference: str) -> bool:
    return bool(DIGEST_PATTERN.match(reference))


def compute_digest(data: bytes) -> str:
    return "sha256:" + hashlib.sha256(data).hexdigest()


def validate_name(name: str) -> None:
    """Reject repository names that are not valid or would escape the root."""
    components = name.split("/")
    if not name or any(not NAME_COMPONENT.match(part) for part in components):
        raise NameInvalidError(name)


def manifest_media_type(payload: bytes, fallback: str = "") -> str:
    """Work out a manifest's media type from its JSON body."""
    try:
        document = json.loads(payload)
    except ValueError:
        return fallback or OCI_MANIFEST
    if isinstance(document, dict):
        media_type = document.get("mediaType")
        if isinstance(media_type, str) and media_type:
            return media_type
        if "manifests" in document:
            return OCI_INDEX
    return fallback or OCI_MANIFEST


def _split_digest(digest: str) -> tuple[str, str]:
    if not is_digest(digest):
        raise DigestInvalidError(digest)
    algorithm, hex_digest = digest.split(":", 1)
    return algorithm, hex_digest


def _write_link(path: Path, digest: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(digest, encoding="utf-8")


def _read_link(path: Path) -> str | None:
    try:
        return path.read_text(encoding="utf-8").strip()
    except FileNotFoundError:
        return None


class FilesystemStorage:
    """Blob, manifest and upload storage rooted at a cache directory."""

    def __init__(self, root_directory: Path):
        self.root_directory = Path(root_directory)
        self.base = self.root_directory / REGISTRY_ROOT

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def blob_path(self, digest: str) -> Path:
        algorithm, hex_digest = _split_digest(digest)
        return self.base / "blobs" / algorithm / hex_digest[:2] / hex_digest / "data"

    def repository_path(self, name: str) -> Path:
        validate_name(name)
        return self.base / "repositories" / name

    def _layer_link(self, name: str, digest: str) -> Path:
        algorithm, hex_digest = _split_digest(digest)
        return self.repository_path(name) / "_layers" / algorithm / hex_digest / "link"

    def _revision_link(self, name: str, digest: str) -> Path:
        algorithm, hex_digest = _split_digest(digest)
        return (
            self.repository_path(name)
            / "_manifests"
            / "revisions"
            / algorithm
            / hex_digest
            / "link"
        )

    def _tag_dir(self, name: str, tag: str) -> Path:
        if not TAG_PATTERN.match(tag):
            raise ManifestUnknownError(name, tag)
        return self.repository_path(name) / "_manifests" / "tags" / tag

    def _upload_dir(self, name: str, upload_id: str) -> Path:
        try:
            uuid.UUID(upload_id)
        except ValueError as exc:
            raise UploadUnknownError(upload_id) from exc
        return self.repository_path(name) / "_uploads" / upload_id

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def check_health(self) -> None:
        """Raise OSError if the storage root is not a writable directory."""
        if not self.root_directory.is_dir():
            raise OSError(f"storage root missing: {self.root_directory}")
        if not os.access(self.root_directory, os.W_OK):
            raise OSError(f"storage root not writable: {self.root_directory}")

    # ------------------------------------------------------------------
    # Blobs
    # ------------------------------------------------------------------

    def blob_exists(self, digest: str) -> bool:
        return self.blob_path(digest).is_file()

    def repository_has_blob(self, name: str, digest: str) -> bool:
        return self._layer_link(name, digest).is_file() and self.blob_exists(digest)

    def stat_blob(self, name: str, digest: str) -> int:
        if not self.repository_has_blob(name, digest):
            raise BlobUnknownError(digest)
        return self.blob_path(digest).stat().st_size

    def open_blob(self, name: str, digest: str) -> Path:
        if not self.repository_has_blob(name, digest):
            raise BlobUnknownError(digest)
        return self.blob_path(digest)

    def _commit_blob(self, source: Path, digest: str) -> None:
        target = self.blob_path(digest)
        if target.is_file():
            source.unlink()
            return
        target.parent.mkdir(parents=True, exist_ok=True)
        os.replace(source, target)

    def put_blob(self, name: str, data: bytes, digest: str | None = None) -> str:
        actual = compute_digest(data)
        if digest is not None and digest != actual:
            raise DigestInvalidError(digest, actual)
        target = self.blob_path(actual)
        if not target.is_file():
            target.parent.mkdir(parents=True, exist_ok=True)
            tmp = target.with_name(f"data.{uuid.uuid4().hex}.tmp")
            tmp.write_bytes(data)
            os.replace(tmp, target)
        _write_link(self._layer_link(name, actual), actual)
        return actual

    def mount_blob(self, name: str, digest: str, from_name: str) -> bool:
        """Link a blob already stored for another repository."""
        if not self.repository_has_blob(from_name, digest):
            return False
        _write_link(self._layer_link(name, digest), digest)
        return True

    # ------------------------------------------------------------------
    # Uploads
    # ------------------------------------------------------------------

    def start_upload(self, name: str) -> str:
        upload_id = str(uuid.uuid4())
        upload_dir = self._upload_dir(name, upload_id)
        upload_dir.mkdir(parents=True, exist_ok=True)
        (upload_dir / "data").touch()
        (upload_dir / "startedat").write_text(
            datetime.now(timezone.utc).isoformat(), encoding="utf-8"
        )
        return upload_id

    def upload_size(self, name: str, upload_id: str) -> int:
        data = self._upload_dir(name, upload_id) / "data"
        if not data.is_file():
            raise UploadUnknownError(upload_id)
        return data.stat().st_size

    def append_upload(self, name: str, upload_id: str, chunk: bytes) -> int:
        data = self._upload_dir(name, upload_id) / "data"
        if not data.is_file():
            raise UploadUnknownError(upload_id)
        with open(data, "ab") as fh:
            fh.write(chunk)
        return data.stat().st_size

    def finish_upload(self, name: str, upload_id: str, digest: str) -> str:
        upload_dir = self._upload_dir(name, upload_id)
        data = upload_dir / "data"
        if not data.is_file():
            raise UploadUnknownError(upload_id)
        _split_digest(digest)
        hasher = hashlib.sha256()
        with open(data, "rb") as fh:
            for chunk in iter(lambda: fh.read(CHUNK_SIZE), b""):
                hasher.update(chunk)
        actual = "sha256:" + hasher.hexdigest()
        if actual != digest:
            shutil.rmtree(upload_dir, ignore_errors=True)
            raise DigestInvalidError(digest, actual)
        self._commit_blob(data, digest)
        shutil.rmtree(upload_dir, ignore_errors=True)
        _write_link(self._layer_link(name, digest), digest)
        return digest

    def cancel_upload(self, name: str, upload_id: str) -> None:
        upload_dir = self._upload_dir(name, upload_id)
        if not upload_dir.is_dir():
            raise UploadUnknownError(upload_id)
        shutil.rmtree(upload_dir)

    # ------------------------------------------------------------------
    # Manifests
    # ------------------------------------------------------------------

    def resolve_manifest(self, name: str, reference: str) -> str:
        """Return the digest a tag or digest reference points to."""
        if is_digest(reference):
            link = _read_link(self._revision_link(name, reference))
        else:
            link = _read_link(self._tag_dir(name, reference) / "current" / "link")
        if not link or not self.blob_exists(link):
            raise ManifestUnknownError(name, reference)
        return link

    def get_manifest(self, name: str, reference: str) -> tuple[bytes, str, str]:
        """Return (payload, digest, media type)."""
        digest = self.resolve_manifest(name, reference)
        payload = self.blob_path(digest).read_bytes()
        return payload, digest, manifest_media_type(payload)

    def put_manifest(self, name: str, reference: str, payload: bytes) -> str:
        digest = compute_digest(payload)
        if is_digest(reference) and reference != digest:
            raise DigestInvalidError(reference, digest)
        target = self.blob_path(digest)
        if not target.is_file():
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(payload)
        _write_link(self._revision_link(name, digest), digest)
        if not is_digest(reference):
            tag_dir = self._tag_dir(name, reference)
            _write_link(tag_dir / "current" / "link", digest)
            algorithm, hex_digest = digest.split(":", 1)
            _write_link(tag_dir / "index" / algorithm / hex_digest / "link", digest)
        return digest

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    def list_tags(self, name: str) -> list[str]:
        tags_dir = self.repository_path(name) / "_manifests" / "tags"
        if not tags_dir.is_dir():
            if not self.repository_path(name).is_dir():
                raise ManifestUnknownError(name, "")
            return []
        return sorted(
            entry.name
            for entry in tags_dir.iterdir()
            if (entry / "current" / "link").is_file()
        )

    def list_repositories(self) -> list[str]:
        repos_root = self.base / "repositories"
        if not repos_root.is_dir():
            return []
        names = []
        for manifests in repos_root.rglob("_manifests"):
            if manifests.is_dir():
                names.append(manifests.parent.relative_to(repos_root).as_posix())
        return sorted(names)

    def linked_digests(self, name: str) -> Iterator[str]:
        """Yield every blob digest a repository links (layers and manifests)."""
        repo = self.repository_path(name)
        for kind in ("_layers", "_manifests/revisions"):
            root = repo / kind
            if not root.is_dir():
                continue
            for link in root.rglob("link"):
                digest = _read_link(link)
                if digest and is_digest(digest):
                    yield digest
