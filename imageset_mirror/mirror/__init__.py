"""Image copy, existence checks and reference handling."""

from .mirror import Mirror
from .reference import ImageReference, parse_reference

__all__ = ["ImageReference", "Mirror", "parse_reference"]
