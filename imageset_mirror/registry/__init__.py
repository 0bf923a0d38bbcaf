"""Embedded, filesystem-backed image registry used as the local cache."""

from .config import RegistryConfig, parse_config, render_config
from .lifecycle import LocalRegistry
from .storage import FilesystemStorage

__all__ = [
    "FilesystemStorage",
    "LocalRegistry",
    "RegistryConfig",
    "parse_config",
    "render_config",
]
