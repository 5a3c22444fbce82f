"""Email correlation, thread lifecycle, and daily digest service."""

__version__ = "0.1.0"
