"""Utility helpers for working with files."""

from __future__ import annotations

import os
import stat
from collections import deque
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

INDEX_TARGET_EXTENSIONS = ("md", "txt")


class SourceWalkError(OSError):
    """Raised when a directory under a source root cannot be read."""


def is_hidden(path: Path) -> bool:
    """Return True if the final path segment is a dotfile."""
    return Path(path).name.startswith(".")


def is_regular_file(path: Path) -> bool:
    try:
        mode = os.stat(path).st_mode
    except (OSError, ValueError):
        return False
    return stat.S_ISREG(mode) and not is_hidden(path)


def is_index_target(path: Path) -> bool:
    """Return True for visible regular files with an indexable extension."""
    if not is_regular_file(path):
        return False
    suffix = Path(path).suffix
    return suffix[1:] in INDEX_TARGET_EXTENSIONS if suffix else False


def _modified_after(path: Path, cutoff: datetime) -> bool:
    try:
        mtime = os.stat(path).st_mtime
    except OSError:
        # Unknown mtime: re-indexing is harmless, skipping is not.
        return True
    return datetime.fromtimestamp(mtime, tz=timezone.utc) > cutoff


class RecursiveSourceWalker:
    """Lazily yield indexable files under ``root``, one directory at a time.

    Subdirectories are queued and visited after the current directory is
    exhausted. With ``cutoff`` set, only files modified strictly after it are
    yielded. Read errors raise :class:`SourceWalkError`; the walker cannot be
    restarted.
    """

    def __init__(self, root: Path, cutoff: datetime | None = None) -> None:
        self.root = Path(root)
        self.cutoff = cutoff
        self._pending: deque[Path] = deque()
        self._entries = self._open(self.root)

    def __iter__(self) -> Iterator[Path]:
        return self

    def __next__(self) -> Path:
        while True:
            if self._entries is None:
                raise StopIteration

            try:
                entry = next(self._entries, None)
            except OSError as exc:
                self._close()
                raise SourceWalkError(f"Failed to read directory entry: {exc}") from exc

            if entry is None:
                self._close()
                if not self._pending:
                    raise StopIteration
                self._entries = self._open(self._pending.popleft())
                continue

            path = Path(entry.path)
            if is_hidden(path):
                continue

            try:
                is_dir = entry.is_dir()
            except OSError:
                is_dir = False
            if is_dir:
                self._pending.append(path)
                continue

            if not is_index_target(path):
                continue

            if self.cutoff is not None and not _modified_after(path, self.cutoff):
                continue

            return path

    def _open(self, directory: Path):
        try:
            return os.scandir(directory)
        except OSError as exc:
            self._entries = None
            raise SourceWalkError(f"Failed to read directory {directory}: {exc}") from exc

    def _close(self) -> None:
        if self._entries is not None:
            self._entries.close()
            self._entries = None
