"""Incremental mirroring of a remote scene graph into a local indexed tree."""

from scenesync.version import __version__

__all__ = ["__version__"]
