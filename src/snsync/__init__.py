"""Bidirectional sync between a local folder tree and remote table records."""

__version__ = "2.0.0"
