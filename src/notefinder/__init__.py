"""NoteFinder - local full-text search for markdown and text notes."""

__version__ = "0.1.0"
