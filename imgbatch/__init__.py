"""Batch image normaliser: uniform, size-capped JPEGs streamed as a zip archive."""

__version__ = "0.1.0"
