"""Hybrid product search and catalog sync."""

__version__ = "0.1.0"
