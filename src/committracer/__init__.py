"""Commit Tracer - per-author commit analytics enriched with issue tracker data."""

__version__ = "0.1.0"
