"""Mirror container image sets between connected and disconnected environments."""

from imageset_mirror.__version__ import __version__

__all__ = ["__version__"]
