"""Text helpers for markdown and plain-text notes."""

from __future__ import annotations


def first_line(text: str) -> str:
    """Return the first line of ``text`` without its line terminator."""
    line, _, _ = text.partition("\n")
    return line.removesuffix("\r")


def derive_title(content: str) -> str:
    """Treat the first line as the title, dropping leading ``#`` heading markers.

    >>> derive_title("# Hello World\\nbody")
    'Hello World'
    """
    return first_line(content).lstrip("#").strip()
