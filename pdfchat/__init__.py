"""PDF question answering backend."""

__version__ = "0.1.0"
