"""Incremental indexing of note sources."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Mapping

from notefinder.index.storage import FullTextIndex, IndexWriter
from notefinder.index.watermark import WatermarkSaveError, WatermarkStore
from notefinder.ingestion.text_loader import build_document, document_id, read_content, relative_path
from notefinder.models import FieldHandles
from notefinder.utils.files import RecursiveSourceWalker, is_index_target

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class IndexStats:
    indexed: int = 0
    skipped: int = 0
    failed_sources: Dict[str, str] = field(default_factory=dict)
    processed_files: list[Path] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed_sources

    def record(self, added: bool, path: Path) -> None:
        if added:
            self.indexed += 1
        else:
            self.skipped += 1
        self.processed_files.append(path)


class Indexer:
    """Feeds source files into a full-text index.

    Each source gets its own commit. When a watermark store is attached, the
    start time of every committed source pass is recorded so that incremental
    runs only look at files modified since then.
    """

    def __init__(self, watermarks: WatermarkStore | None = None, *, increment: bool = False) -> None:
        self.watermarks = watermarks
        self.increment = False
        self.indexed_count = 0
        self.set_increment(increment)

    @property
    def is_incrementable(self) -> bool:
        return self.watermarks is not None

    def set_increment(self, increment: bool) -> Indexer:
        if increment and not self.is_incrementable:
            raise ValueError("Incremental indexing requires a watermark store")
        self.increment = increment
        return self

    def index(
        self,
        index_name: str,
        index: FullTextIndex,
        sources: Mapping[str, Path],
    ) -> IndexStats:
        """Index every source of ``index_name`` in mapping order."""
        fields = FieldHandles.resolve(index.schema)
        stats = IndexStats()

        with index.writer() as writer:
            for source_name, root in sources.items():
                started_at = datetime.now(timezone.utc)
                cutoff = self._cutoff(index_name, source_name)
                if cutoff is not None:
                    LOGGER.info(
                        "Indexing %s/%s (changed since %s)", index_name, source_name, cutoff.isoformat()
                    )
                else:
                    LOGGER.info("Indexing %s/%s (full)", index_name, source_name)

                before = stats.indexed
                before_skipped = stats.skipped
                before_files = len(stats.processed_files)
                try:
                    for path in RecursiveSourceWalker(Path(root), cutoff=cutoff):
                        added = self.update_document(writer, fields, source_name, Path(root), path)
                        stats.record(added, path)
                except OSError as exc:
                    # Walk or read failure: drop this source's uncommitted writes.
                    writer.rollback()
                    stats.indexed = before
                    stats.skipped = before_skipped
                    del stats.processed_files[before_files:]
                    stats.failed_sources[source_name] = str(exc)
                    LOGGER.error("Failed to index source %s/%s: %s", index_name, source_name, exc)
                    continue

                writer.commit()
                LOGGER.debug(
                    "Committed %d document(s) from %s/%s",
                    stats.indexed - before,
                    index_name,
                    source_name,
                )
                self._advance_watermark(index_name, source_name, started_at)

        self.indexed_count += stats.indexed
        return stats

    def index_file(
        self,
        index_name: str,
        index: FullTextIndex,
        sources: Mapping[str, Path],
        path: Path,
    ) -> IndexStats:
        """Re-index one file in whichever sources contain it."""
        fields = FieldHandles.resolve(index.schema)
        stats = IndexStats()
        path = Path(os.path.abspath(path))

        if not is_index_target(path):
            LOGGER.warning("Skip %s, not an indexable file", path)
            stats.skipped += 1
            return stats

        with index.writer() as writer:
            for source_name, root in sources.items():
                root = Path(os.path.abspath(root))
                if root not in path.parents:
                    continue
                added = self.update_document(writer, fields, source_name, root, path)
                # Commit even without an insert so the delete of an emptied file lands.
                writer.commit()
                stats.record(added, path)
                LOGGER.debug("Indexed %s into %s/%s", path, index_name, source_name)

        if not stats.processed_files:
            LOGGER.warning("%s is not under any source of index %s", path, index_name)

        self.indexed_count += stats.indexed
        return stats

    def update_document(
        self,
        writer: IndexWriter,
        fields: FieldHandles,
        source_name: str,
        root: Path,
        path: Path,
    ) -> bool:
        """Replace the stored document for ``path``; return True if one was added.

        The old document is always deleted first, so an emptied file drops
        out of the index.
        """
        relative = relative_path(path, root)
        if relative is None:
            return False

        writer.delete_term(fields.id, document_id(source_name, relative))

        content = read_content(path)
        if not content:
            LOGGER.debug("Skip %s, empty content", path)
            return False

        writer.add_document(fields.to_fields(build_document(source_name, relative, content)))
        LOGGER.debug("Added %s:%s", source_name, relative)
        return True

    def _cutoff(self, index_name: str, source_name: str) -> datetime | None:
        if not self.increment or self.watermarks is None:
            return None
        return self.watermarks.get(index_name, source_name)

    def _advance_watermark(self, index_name: str, source_name: str, started_at: datetime) -> None:
        if self.watermarks is None:
            return
        try:
            self.watermarks.update_and_save(index_name, source_name, started_at)
        except WatermarkSaveError as exc:
            LOGGER.warning("%s", exc)
