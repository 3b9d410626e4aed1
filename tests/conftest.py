"""Shared fixtures for NoteFinder tests."""

from __future__ import annotations

from pathlib import Path

import pytest

from notefinder.config import SchemaConfig
from notefinder.index.schema import build_schema
from notefinder.index.storage import FullTextIndex
from notefinder.models import FieldHandles


@pytest.fixture
def full_text_index(tmp_path: Path) -> FullTextIndex:
    """Fresh index with the default note schema."""
    return FullTextIndex.open_or_create(tmp_path / "index", build_schema(SchemaConfig()))


@pytest.fixture
def fields(full_text_index: FullTextIndex) -> FieldHandles:
    return FieldHandles.resolve(full_text_index.schema)


@pytest.fixture
def notes_root(tmp_path: Path) -> Path:
    """A small source tree with visible, hidden and non-target entries."""
    root = tmp_path / "notes"
    (root / "sub" / "deeper").mkdir(parents=True)
    (root / ".git").mkdir()
    (root / "sub" / ".hidden").mkdir()

    (root / "a.md").write_text("# A\ntext", encoding="utf-8")
    (root / "b.txt").write_text("Plain note\nabout bananas", encoding="utf-8")
    (root / "c.pdf").write_text("not indexed", encoding="utf-8")
    (root / ".secret.md").write_text("# Secret", encoding="utf-8")
    (root / ".git" / "x.md").write_text("# Git internals", encoding="utf-8")
    (root / "sub" / "d.md").write_text("## Deep note\napples", encoding="utf-8")
    (root / "sub" / "deeper" / "e.txt").write_text("Deepest", encoding="utf-8")
    (root / "sub" / ".hidden" / "f.md").write_text("# Hidden dir", encoding="utf-8")
    return root
