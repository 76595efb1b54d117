"""LabelHub: content approval and artist assistant backend for a music label."""

__version__ = "0.1.0"
