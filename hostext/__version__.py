"""Version information for hostext."""

__version__ = "0.3.0"
