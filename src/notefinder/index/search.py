"""Full-text search interface."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, List, Mapping

from notefinder.index.storage import FullTextIndex

LOGGER = logging.getLogger(__name__)


class SourceNotFoundError(LookupError):
    """Raised when a result's source is missing from the configured sources."""


def _epoch() -> datetime:
    return datetime.fromtimestamp(0, tz=timezone.utc).astimezone()


def _to_local(value: Any) -> datetime:
    if value is None or isinstance(value, bool):
        return _epoch()
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc).astimezone()
    except (TypeError, ValueError, OverflowError, OSError):
        LOGGER.debug("Malformed updated_at %r, using the epoch", value)
        return _epoch()


def _to_str(value: Any) -> str:
    return value if isinstance(value, str) else ""


@dataclass(slots=True)
class Doc:
    title: str
    updated_at: datetime
    source: str
    path: Path

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> Doc:
        """Map a stored record; missing or bad fields fall back to defaults."""
        return cls(
            title=_to_str(row.get("title")),
            updated_at=_to_local(row.get("updated_at")),
            source=_to_str(row.get("source")),
            path=Path(_to_str(row.get("path"))),
        )

    def absolute_path(self, sources: Mapping[str, Path]) -> Path:
        try:
            root = sources[self.source]
        except KeyError:
            raise SourceNotFoundError(
                f"Failed to get the absolute path from source '{self.source}' and path '{self.path}'."
            ) from None
        return Path(root) / self.path


class Searcher:
    """High-level API to query a full-text index."""

    def __init__(self, index: FullTextIndex) -> None:
        self.index = index

    def search(self, query: str, *, limit: int = 10) -> List[Doc]:
        with self.index.reader() as reader:
            rows = reader.search(query, limit=limit)
        return [Doc.from_row(row) for row in rows]
