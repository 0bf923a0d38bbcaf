"""Custom exceptions for mirroring workflows.

This module defines a hierarchy of exceptions for the mirror workflows so the
CLI can report every failure class with a specific message and exit status.

Exception Hierarchy:
    MirrorError (base)
        ├── ValidationError
        ├── SetupError
        │   └── ConfigError
        ├── CollectionError
        ├── RegistryError
        │   ├── RegistryStartError
        │   └── RegistryFaultError
        ├── TransferError
        ├── ArchiveError
        └── CacheVerificationError

Usage:
    from imageset_mirror.exceptions import ValidationError

    if not config_path:
        raise ValidationError("config-required", "use the --config flag it is mandatory")
"""

from __future__ import annotations

from typing import Sequence


class MirrorError(Exception):
    """Base exception for all mirroring operations."""


class ValidationError(MirrorError):
    """Command line arguments form an invalid combination."""

    def __init__(self, rule: str, message: str):
        self.rule = rule
        super().__init__(message)


class SetupError(MirrorError):
    """Working directories, configuration or registry could not be prepared."""


class ConfigError(SetupError):
    """Image set configuration is missing or malformed."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Invalid image set configuration {path}: {reason}")


class CollectionError(MirrorError):
    """A collector failed; remaining collectors were not run."""

    def __init__(self, phase: str, cause: BaseException, partial: Sequence = ()):
        self.phase = phase
        self.cause = cause
        self.partial = list(partial)
        super().__init__(f"[{phase} collector] {cause}")


class RegistryError(MirrorError):
    """Base exception for local cache registry errors."""


class RegistryStartError(RegistryError):
    """Local cache registry did not become ready."""


class RegistryFaultError(RegistryError):
    """Local cache registry stopped without being asked to."""


class TransferError(MirrorError):
    """At least one image could not be transferred."""

    def __init__(self, failures: Sequence[tuple[str, str]]):
        self.failures = list(failures)
        details = "; ".join(f"{ref}: {reason}" for ref, reason in self.failures)
        super().__init__(
            f"{len(self.failures)} image(s) failed to transfer: {details}"
        )


class ArchiveError(MirrorError):
    """Building or extracting the transport archive failed."""


class CacheVerificationError(MirrorError):
    """Images required for mirroring are missing from the local cache."""

    def __init__(self, missing: Sequence[str]):
        self.missing = list(missing)
        listing = "\n".join(self.missing)
        super().__init__(
            "all images necessary for mirroring are not available in the cache.\n"
            f"missing images:\n{listing}\n"
            "please re-run the mirror to disk process"
        )
