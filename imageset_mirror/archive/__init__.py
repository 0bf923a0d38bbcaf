"""Archive packaging (mirror to disk) and unpackaging (disk to mirror)."""

from .extractor import ArchiveExtractor
from .packager import MirrorArchiver, archive_name, list_archives

__all__ = ["ArchiveExtractor", "MirrorArchiver", "archive_name", "list_archives"]
