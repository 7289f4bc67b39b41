"""hostext: plugin lifecycle management for deployed host installations."""

from hostext.__version__ import __version__

__all__ = ["__version__"]
