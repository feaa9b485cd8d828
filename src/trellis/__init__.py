"""Trellis: work-item hierarchy migration between taxonomy presets."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("trellis-migrate")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"

from trellis.core import TrellisDB, WorkItem

__all__ = ["TrellisDB", "WorkItem", "__version__"]
