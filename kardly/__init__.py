"""Kardly - photocard catalog and collection backend."""

__version__ = "0.3.0"
