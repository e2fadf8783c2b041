"""XAFSForge package entry."""

from importlib.metadata import PackageNotFoundError, version

__all__ = ["__version__"]

try:
    __version__ = version("xafsforge")
except PackageNotFoundError:  # running from a source tree without metadata
    __version__ = "0.1.0"
