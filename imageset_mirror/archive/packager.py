"""Packing the local cache into transportable tar chunks.

Chunks are written as ``mirror_000001.tar``, ``mirror_000002.tar``, ... into
the run's root directory. Together they hold the image set configuration, the
working directory and, for every collected image, its cache repository plus
each blob that repository links.
"""

from __future__ import annotations

import tarfile
from pathlib import Path
from typing import Sequence

from imageset_mirror.config.settings import (
    ARCHIVE_CONFIG_NAME,
    ARCHIVE_PREFIX,
    ARCHIVE_SUFFIX,
    DEFAULT_ARCHIVE_SIZE_GIB,
    WORKING_DIR,
)
from imageset_mirror.domain import RunContext, RunOptions, WorkItem
from imageset_mirror.exceptions import ArchiveError
from imageset_mirror.logging import LoggerFactory, operation_context
from imageset_mirror.mirror.reference import parse_reference
from imageset_mirror.registry.storage import FilesystemStorage, StorageError

GIB = 1024 * 1024 * 1024

log = LoggerFactory.for_archive()


def archive_name(index: int) -> str:
    return f"{ARCHIVE_PREFIX}{index:06d}{ARCHIVE_SUFFIX}"


def list_archives(directory: Path) -> list[Path]:
    """Archive chunks in a directory, in the order they were written."""
    return sorted(directory.glob(f"{ARCHIVE_PREFIX}*{ARCHIVE_SUFFIX}"))


class MirrorArchiver:
    """Builds the archive chunks of a mirror-to-disk run."""

    def __init__(
        self,
        opts: RunOptions,
        archive_size_gib: int | None = None,
        storage: FilesystemStorage | None = None,
    ):
        self.opts = opts
        self.max_chunk_bytes = (archive_size_gib or DEFAULT_ARCHIVE_SIZE_GIB) * GIB
        self.storage = storage or FilesystemStorage(opts.cache_dir)
        self.chunks: list[Path] = []
        self._tar: tarfile.TarFile | None = None

    def plan_members(self, items: Sequence[WorkItem]) -> list[tuple[Path, str]]:
        """Return (file, name in archive) pairs for everything to pack.

        Raises:
            ArchiveError: If an image's repository is not in the cache
        """
        members: list[tuple[Path, str]] = []

        config = Path(self.opts.config_path)
        if config.is_file():
            members.append((config, ARCHIVE_CONFIG_NAME))

        working_dir = self.opts.working_dir
        if working_dir.is_dir():
            for path in sorted(working_dir.rglob("*")):
                if path.is_file():
                    rel = path.relative_to(working_dir).as_posix()
                    members.append((path, f"{WORKING_DIR}/{rel}"))

        repositories: list[str] = []
        for item in items:
            path = parse_reference(item.destination).path
            if path not in repositories:
                repositories.append(path)

        cache_root = self.storage.root_directory
        seen_blobs: set[str] = set()
        for name in repositories:
            try:
                repo_dir = self.storage.repository_path(name)
                if not repo_dir.is_dir():
                    raise ArchiveError(f"image repository {name} not found in the local cache")
                for path in sorted(repo_dir.rglob("*")):
                    if not path.is_file() or "_uploads" in path.relative_to(repo_dir).parts:
                        continue
                    members.append((path, path.relative_to(cache_root).as_posix()))
                for digest in self.storage.linked_digests(name):
                    if digest in seen_blobs:
                        continue
                    seen_blobs.add(digest)
                    blob = self.storage.blob_path(digest)
                    if not blob.is_file():
                        raise ArchiveError(f"blob {digest} of {name} missing from the local cache")
                    members.append((blob, blob.relative_to(cache_root).as_posix()))
            except StorageError as e:
                raise ArchiveError(f"unable to read {name} from the local cache: {e}") from e
        return members

    def _remove_stale_chunks(self) -> None:
        for stale in list_archives(self.opts.root_dir):
            log.debug(f"Removing previous archive {stale}")
            stale.unlink()

    def _next_chunk(self) -> None:
        self.close()
        path = self.opts.root_dir / archive_name(len(self.chunks) + 1)
        self._tar = tarfile.open(path, "w")
        self.chunks.append(path)
        log.info(f"writing {path.name}")

    def build_archive(self, ctx: RunContext, items: Sequence[WorkItem]) -> list[Path]:
        """Write the archive chunks and return their paths.

        A file larger than the chunk bound gets a chunk of its own.

        Raises:
            ArchiveError: If the cache content is incomplete or writing failed
        """
        with operation_context("archive", destination=str(self.opts.root_dir)):
            members = self.plan_members(items)
            try:
                self.opts.root_dir.mkdir(parents=True, exist_ok=True)
                self._remove_stale_chunks()
                chunk_bytes = 0
                for path, arcname in members:
                    ctx.raise_if_cancelled()
                    size = path.stat().st_size
                    if self._tar is None or (
                        chunk_bytes and chunk_bytes + size > self.max_chunk_bytes
                    ):
                        self._next_chunk()
                        chunk_bytes = 0
                    self._tar.add(path, arcname=arcname, recursive=False)
                    chunk_bytes += size
                if self._tar is None:
                    self._next_chunk()
            except (OSError, tarfile.TarError) as e:
                raise ArchiveError(f"failed to write archive: {e}") from e
            finally:
                self.close()
            log.info(f"archived {len(members)} file(s) into {len(self.chunks)} chunk(s)")
        return list(self.chunks)

    def close(self) -> None:
        if self._tar is None:
            return
        tar, self._tar = self._tar, None
        tar.close()
