"""Collect Linux memory snapshots and report how memory usage changed between them."""

__version__ = "0.1.0"