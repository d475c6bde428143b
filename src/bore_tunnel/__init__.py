"""Bore tunnel supervisor for short-lived CI jobs."""

__version__ = "0.3.0"
