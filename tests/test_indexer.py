"""Tests for Indexer."""

from __future__ import annotations

import logging
import os
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from notefinder.index import indexer as indexer_module
from notefinder.index.indexer import Indexer, IndexStats
from notefinder.index.schema import Field, FieldNotFoundError, IndexSchema
from notefinder.index.storage import FullTextIndex
from notefinder.index.watermark import WatermarkStore
from notefinder.models import FieldHandles
from notefinder.utils import files


def _ids(index: FullTextIndex) -> list[str]:
    conn = index.connect()
    try:
        rows = conn.execute("SELECT id FROM documents ORDER BY id").fetchall()
    finally:
        conn.close()
    return [row["id"] for row in rows]


def _set_mtime(path: Path, when: float) -> None:
    os.utime(path, (when, when))


@pytest.fixture
def watermarks(tmp_path: Path) -> WatermarkStore:
    return WatermarkStore.load(tmp_path / "data" / "watermarks.json")


class TestIndexStats:
    """Test IndexStats tracking."""

    def test_defaults(self) -> None:
        stats = IndexStats()

        assert stats.indexed == 0
        assert stats.skipped == 0
        assert stats.failed_sources == {}
        assert stats.processed_files == []
        assert stats.ok

    def test_record(self) -> None:
        stats = IndexStats()

        stats.record(True, Path("/n/a.md"))
        stats.record(False, Path("/n/b.md"))

        assert stats.indexed == 1
        assert stats.skipped == 1
        assert stats.processed_files == [Path("/n/a.md"), Path("/n/b.md")]

    def test_failed_source_is_not_ok(self) -> None:
        stats = IndexStats(failed_sources={"notes": "boom"})

        assert not stats.ok


class TestIncrementMode:
    def test_without_store(self) -> None:
        indexer = Indexer()

        assert not indexer.is_incrementable
        assert not indexer.increment
        with pytest.raises(ValueError):
            indexer.set_increment(True)

    def test_with_store(self, watermarks: WatermarkStore) -> None:
        indexer = Indexer(watermarks)

        assert indexer.is_incrementable
        assert indexer.set_increment(True) is indexer
        assert indexer.increment

    def test_constructor_rejects_increment_without_store(self) -> None:
        with pytest.raises(ValueError):
            Indexer(None, increment=True)


class TestFullPass:
    """Test Indexer.index over whole sources."""

    def test_scenario_single_note(self, tmp_path: Path, full_text_index: FullTextIndex) -> None:
        root = tmp_path / "notes"
        root.mkdir()
        (root / "a.md").write_text("# A\ntext", encoding="utf-8")

        stats = Indexer().index("docs", full_text_index, {"notes": root})

        assert stats.indexed == 1
        fields = FieldHandles.resolve(full_text_index.schema)
        with full_text_index.reader() as reader:
            [doc] = reader.term_docs(fields.id, "notes:a.md")
        assert doc["title"] == "A"
        assert doc["source"] == "notes"
        assert doc["path"] == "a.md"

    def test_indexes_only_visible_targets(
        self, notes_root: Path, full_text_index: FullTextIndex
    ) -> None:
        stats = Indexer().index("docs", full_text_index, {"notes": notes_root})

        assert stats.indexed == 4
        assert _ids(full_text_index) == [
            "notes:a.md",
            "notes:b.txt",
            "notes:sub/d.md",
            "notes:sub/deeper/e.txt",
        ]

    @pytest.mark.skipif(os.name == "nt", reason="backslash is a separator on Windows")
    def test_backslash_file_name_gets_its_own_document(
        self, tmp_path: Path, full_text_index: FullTextIndex
    ) -> None:
        root = tmp_path / "notes"
        (root / "a").mkdir(parents=True)
        (root / "a" / "b.md").write_text("# Nested", encoding="utf-8")
        (root / "a\\b.md").write_text("# Flat", encoding="utf-8")

        stats = Indexer().index("docs", full_text_index, {"notes": root})

        assert stats.indexed == 2
        assert _ids(full_text_index) == ["notes:a/b.md", "notes:a\\b.md"]

    def test_reindex_replaces_document(
        self, notes_root: Path, full_text_index: FullTextIndex, fields: FieldHandles
    ) -> None:
        indexer = Indexer()
        indexer.index("docs", full_text_index, {"notes": notes_root})
        (notes_root / "a.md").write_text("# A revised\nnew text", encoding="utf-8")

        indexer.index("docs", full_text_index, {"notes": notes_root})

        with full_text_index.reader() as reader:
            docs = reader.term_docs(fields.id, "notes:a.md")
            assert reader.num_docs() == 4
        assert [doc["title"] for doc in docs] == ["A revised"]

    def test_emptied_file_is_removed(
        self, notes_root: Path, full_text_index: FullTextIndex
    ) -> None:
        indexer = Indexer()
        indexer.index("docs", full_text_index, {"notes": notes_root})
        (notes_root / "a.md").write_text("", encoding="utf-8")

        stats = indexer.index("docs", full_text_index, {"notes": notes_root})

        assert stats.indexed == 3
        assert stats.skipped == 1
        assert "notes:a.md" not in _ids(full_text_index)

    def test_empty_file_never_indexed(self, tmp_path: Path, full_text_index: FullTextIndex) -> None:
        root = tmp_path / "notes"
        root.mkdir()
        (root / "empty.md").write_text("", encoding="utf-8")

        stats = Indexer().index("docs", full_text_index, {"notes": root})

        assert stats.indexed == 0
        assert _ids(full_text_index) == []

    def test_invalid_utf8_is_skipped(self, tmp_path: Path, full_text_index: FullTextIndex) -> None:
        root = tmp_path / "notes"
        root.mkdir()
        (root / "bad.md").write_bytes(b"\xff\xfe broken")
        (root / "good.md").write_text("good", encoding="utf-8")

        stats = Indexer().index("docs", full_text_index, {"notes": root})

        assert stats.ok
        assert _ids(full_text_index) == ["notes:good.md"]

    def test_sources_use_separate_namespaces(
        self, tmp_path: Path, full_text_index: FullTextIndex
    ) -> None:
        for name in ("notes", "wiki"):
            (tmp_path / name).mkdir()
            (tmp_path / name / "a.md").write_text(f"# {name}", encoding="utf-8")

        stats = Indexer().index(
            "docs", full_text_index, {"notes": tmp_path / "notes", "wiki": tmp_path / "wiki"}
        )

        assert stats.indexed == 2
        assert _ids(full_text_index) == ["notes:a.md", "wiki:a.md"]

    def test_indexed_count_accumulates(
        self, notes_root: Path, full_text_index: FullTextIndex
    ) -> None:
        indexer = Indexer()

        indexer.index("docs", full_text_index, {"notes": notes_root})
        indexer.index("docs", full_text_index, {"notes": notes_root})

        assert indexer.indexed_count == 8

    def test_missing_schema_field_fails_before_writing(self, tmp_path: Path, notes_root: Path) -> None:
        schema = IndexSchema([Field("title", stored=True), Field("body")])
        index = FullTextIndex.open_or_create(tmp_path / "partial", schema)

        with pytest.raises(FieldNotFoundError):
            Indexer().index("docs", index, {"notes": notes_root})


class TestWatermarks:
    """Test incremental passes and watermark bookkeeping."""

    def test_watermark_is_pass_start_time(
        self,
        notes_root: Path,
        full_text_index: FullTextIndex,
        watermarks: WatermarkStore,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        before = datetime.now(timezone.utc)
        finished = []
        real_writer = full_text_index.writer

        def writer():
            w = real_writer()
            original = w.commit

            def commit():
                original()
                finished.append(datetime.now(timezone.utc))

            w.commit = commit
            return w

        monkeypatch.setattr(full_text_index, "writer", writer)

        Indexer(watermarks).index("docs", full_text_index, {"notes": notes_root})

        recorded = watermarks.get("docs", "notes")
        assert before <= recorded <= finished[0]
        assert WatermarkStore.load(watermarks.path).get("docs", "notes") == recorded

    def test_rerun_without_changes_adds_nothing(
        self, tmp_path: Path, full_text_index: FullTextIndex, watermarks: WatermarkStore
    ) -> None:
        root = tmp_path / "notes"
        root.mkdir()
        note = root / "a.md"
        note.write_text("# A\ntext", encoding="utf-8")
        _set_mtime(note, time.time() - 60)
        indexer = Indexer(watermarks, increment=True)

        first = indexer.index("docs", full_text_index, {"notes": root})
        first_mark = watermarks.get("docs", "notes")
        second = indexer.index("docs", full_text_index, {"notes": root})

        assert first.indexed == 1
        assert second.indexed == 0
        assert second.processed_files == []
        assert watermarks.get("docs", "notes") > first_mark
        assert _ids(full_text_index) == ["notes:a.md"]

    def test_incremental_picks_up_changed_files(
        self, notes_root: Path, full_text_index: FullTextIndex, watermarks: WatermarkStore
    ) -> None:
        past = time.time() - 3600
        for path in notes_root.rglob("*"):
            if path.is_file():
                _set_mtime(path, past)
        indexer = Indexer(watermarks, increment=True)
        indexer.index("docs", full_text_index, {"notes": notes_root})

        changed = notes_root / "sub" / "d.md"
        changed.write_text("## Deep note\npears", encoding="utf-8")
        _set_mtime(changed, time.time() + 60)
        stats = indexer.index("docs", full_text_index, {"notes": notes_root})

        assert stats.processed_files == [changed]
        assert stats.indexed == 1
        with full_text_index.reader() as reader:
            assert [row["path"] for row in reader.search("pears")] == ["sub/d.md"]
            assert reader.search("apples") == []

    def test_file_modified_during_pass_is_seen_next_time(
        self,
        notes_root: Path,
        full_text_index: FullTextIndex,
        watermarks: WatermarkStore,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        past = time.time() - 3600
        for path in notes_root.rglob("*"):
            if path.is_file():
                _set_mtime(path, past)
        touched = notes_root / "b.txt"
        real_update = Indexer.update_document

        def update_and_touch(self, writer, fields, source_name, root, path):
            if path.name == "a.md":
                # Simulate an edit landing after the pass started.
                _set_mtime(touched, time.time())
            return real_update(self, writer, fields, source_name, root, path)

        monkeypatch.setattr(Indexer, "update_document", update_and_touch)
        indexer = Indexer(watermarks, increment=True)
        indexer.index("docs", full_text_index, {"notes": notes_root})

        monkeypatch.setattr(Indexer, "update_document", real_update)
        stats = indexer.index("docs", full_text_index, {"notes": notes_root})

        assert touched in stats.processed_files

    def test_full_mode_ignores_watermark(
        self, notes_root: Path, full_text_index: FullTextIndex, watermarks: WatermarkStore
    ) -> None:
        watermarks.update_and_save("docs", "notes", datetime.now(timezone.utc) + timedelta(days=1))

        stats = Indexer(watermarks, increment=False).index(
            "docs", full_text_index, {"notes": notes_root}
        )

        assert stats.indexed == 4

    def test_incremental_uses_watermark_as_cutoff(
        self, notes_root: Path, full_text_index: FullTextIndex, watermarks: WatermarkStore
    ) -> None:
        watermarks.update_and_save("docs", "notes", datetime.now(timezone.utc) + timedelta(days=1))

        stats = Indexer(watermarks, increment=True).index(
            "docs", full_text_index, {"notes": notes_root}
        )

        assert stats.indexed == 0

    def test_incremental_without_watermark_is_full(
        self, notes_root: Path, full_text_index: FullTextIndex, watermarks: WatermarkStore
    ) -> None:
        stats = Indexer(watermarks, increment=True).index(
            "docs", full_text_index, {"notes": notes_root}
        )

        assert stats.indexed == 4
        assert watermarks.get("docs", "notes") is not None

    def test_watermarks_are_per_index(
        self, notes_root: Path, full_text_index: FullTextIndex, watermarks: WatermarkStore
    ) -> None:
        Indexer(watermarks).index("docs", full_text_index, {"notes": notes_root})

        assert watermarks.get("docs", "notes") is not None
        assert watermarks.get("other", "notes") is None

    def test_save_failure_is_not_fatal(
        self,
        tmp_path: Path,
        notes_root: Path,
        full_text_index: FullTextIndex,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        store = WatermarkStore(blocker / "watermarks.json")

        with caplog.at_level(logging.WARNING, logger=indexer_module.__name__):
            stats = Indexer(store).index("docs", full_text_index, {"notes": notes_root})

        assert stats.indexed == 4
        assert store.get("docs", "notes") is not None
        assert "Failed to save" in caplog.text


class TestSourceFailures:
    def test_missing_source_does_not_stop_others(
        self,
        tmp_path: Path,
        notes_root: Path,
        full_text_index: FullTextIndex,
        watermarks: WatermarkStore,
    ) -> None:
        sources = {"gone": tmp_path / "gone", "notes": notes_root}

        stats = Indexer(watermarks).index("docs", full_text_index, sources)

        assert not stats.ok
        assert set(stats.failed_sources) == {"gone"}
        assert stats.indexed == 4
        assert watermarks.get("docs", "gone") is None
        assert watermarks.get("docs", "notes") is not None

    def test_failed_walk_rolls_back_source(
        self,
        tmp_path: Path,
        notes_root: Path,
        full_text_index: FullTextIndex,
        watermarks: WatermarkStore,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        other = tmp_path / "other"
        other.mkdir()
        (other / "o.md").write_text("# Other", encoding="utf-8")
        real_scandir = os.scandir

        def fake_scandir(path):
            if Path(path).name == "sub":
                raise PermissionError(13, "Permission denied", str(path))
            return real_scandir(path)

        monkeypatch.setattr(files.os, "scandir", fake_scandir)

        stats = Indexer(watermarks).index(
            "docs", full_text_index, {"notes": notes_root, "other": other}
        )

        assert set(stats.failed_sources) == {"notes"}
        assert stats.indexed == 1
        assert stats.processed_files == [other / "o.md"]
        assert _ids(full_text_index) == ["other:o.md"]
        assert watermarks.get("docs", "notes") is None


class TestSingleFilePass:
    """Test Indexer.index_file."""

    def test_indexes_file_in_matching_source(
        self, tmp_path: Path, notes_root: Path, full_text_index: FullTextIndex
    ) -> None:
        other = tmp_path / "other"
        other.mkdir()

        stats = Indexer().index_file(
            "docs", full_text_index, {"other": other, "notes": notes_root}, notes_root / "sub" / "d.md"
        )

        assert stats.indexed == 1
        assert _ids(full_text_index) == ["notes:sub/d.md"]

    def test_relative_argument(
        self, notes_root: Path, full_text_index: FullTextIndex, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.chdir(notes_root)

        stats = Indexer().index_file("docs", full_text_index, {"notes": notes_root}, Path("a.md"))

        assert stats.indexed == 1
        assert _ids(full_text_index) == ["notes:a.md"]

    def test_file_outside_sources(
        self, tmp_path: Path, notes_root: Path, full_text_index: FullTextIndex
    ) -> None:
        stray = tmp_path / "stray.md"
        stray.write_text("# Stray", encoding="utf-8")

        stats = Indexer().index_file("docs", full_text_index, {"notes": notes_root}, stray)

        assert stats.indexed == 0
        assert stats.processed_files == []
        assert _ids(full_text_index) == []

    def test_emptied_file_removed(
        self, notes_root: Path, full_text_index: FullTextIndex
    ) -> None:
        indexer = Indexer()
        note = notes_root / "a.md"
        indexer.index_file("docs", full_text_index, {"notes": notes_root}, note)
        note.write_text("", encoding="utf-8")

        stats = indexer.index_file("docs", full_text_index, {"notes": notes_root}, note)

        assert stats.indexed == 0
        assert stats.skipped == 1
        assert _ids(full_text_index) == []

    def test_non_target_skipped(self, notes_root: Path, full_text_index: FullTextIndex) -> None:
        stats = Indexer().index_file(
            "docs", full_text_index, {"notes": notes_root}, notes_root / "c.pdf"
        )

        assert stats.indexed == 0
        assert stats.skipped == 1
        assert _ids(full_text_index) == []

    def test_does_not_touch_watermarks(
        self, notes_root: Path, full_text_index: FullTextIndex, watermarks: WatermarkStore
    ) -> None:
        Indexer(watermarks).index_file(
            "docs", full_text_index, {"notes": notes_root}, notes_root / "a.md"
        )

        assert len(watermarks) == 0
