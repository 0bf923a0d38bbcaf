"""Unpacking archive chunks on the disconnected side."""

from __future__ import annotations

import shutil
import tarfile
from pathlib import Path, PurePosixPath

from imageset_mirror.archive.packager import list_archives
from imageset_mirror.config.settings import WORKING_DIR
from imageset_mirror.domain import RunOptions
from imageset_mirror.exceptions import ArchiveError
from imageset_mirror.logging import LoggerFactory, operation_context

CACHE_PREFIX = "docker"

log = LoggerFactory.for_archive()


class ArchiveExtractor:
    """Restores cache content and the working directory from archive chunks.

    ``docker/...`` members land in the cache directory and
    ``working-dir/...`` members in the working directory. Members that are
    links, devices, absolute or contain ``..`` abort the extraction.
    """

    def __init__(self, opts: RunOptions):
        self.opts = opts
        self._tar: tarfile.TarFile | None = None

    def _target(self, member: tarfile.TarInfo) -> Path | None:
        name = PurePosixPath(member.name)
        if name.is_absolute() or ".." in name.parts:
            raise ArchiveError(f"archive member escapes its target: {member.name}")
        if not (member.isfile() or member.isdir()):
            raise ArchiveError(f"archive member is not a regular file: {member.name}")
        parts = name.parts
        if not parts:
            return None
        if parts[0] == CACHE_PREFIX:
            return self.opts.cache_dir.joinpath(*parts)
        if parts[0] == WORKING_DIR:
            return self.opts.working_dir.joinpath(*parts[1:])
        return None

    def _extract_chunk(self, chunk: Path) -> int:
        count = 0
        self._tar = tarfile.open(chunk, "r")
        try:
            for member in self._tar:
                target = self._target(member)
                if target is None:
                    log.debug(f"Skipping {member.name}")
                    continue
                if member.isdir():
                    target.mkdir(parents=True, exist_ok=True)
                    continue
                source = self._tar.extractfile(member)
                if source is None:
                    raise ArchiveError(f"unable to read {member.name} from {chunk.name}")
                target.parent.mkdir(parents=True, exist_ok=True)
                with source, open(target, "wb") as fh:
                    shutil.copyfileobj(source, fh)
                count += 1
        finally:
            self.close()
        return count

    def unarchive(self) -> int:
        """Extract every chunk in order and return the number of files written.

        Raises:
            ArchiveError: If no chunk exists, a chunk is unreadable or a member
                is unsafe
        """
        chunks = list_archives(self.opts.root_dir)
        if not chunks:
            raise ArchiveError(f"no archive found in {self.opts.root_dir}")
        with operation_context("unarchive", source=str(self.opts.root_dir)):
            total = 0
            for chunk in chunks:
                log.info(f"extracting {chunk.name}")
                try:
                    total += self._extract_chunk(chunk)
                except (OSError, tarfile.TarError) as e:
                    raise ArchiveError(f"failed to extract {chunk.name}: {e}") from e
            log.info(f"extracted {total} file(s) from {len(chunks)} chunk(s)")
        return total

    def close(self) -> None:
        if self._tar is None:
            return
        tar, self._tar = self._tar, None
        tar.close()
