"""mediaproc - fetch, transcode and publish media assets."""

from mediaproc.version import __version__

__all__ = ["__version__"]
