"""Load markdown and plain-text notes into indexable documents."""

from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from pathlib import Path

from notefinder.models import IndexedDocument
from notefinder.utils.text import derive_title

LOGGER = logging.getLogger(__name__)


def relative_path(path: Path, root: Path) -> str | None:
    """Return ``path`` relative to ``root`` as a ``/``-separated string.

    Returns ``None`` (and logs a warning) if the path is not under ``root`` or
    cannot be represented as UTF-8.
    """
    path_str = os.fspath(path)
    try:
        path_str.encode("utf-8")
    except UnicodeEncodeError:
        LOGGER.warning("Skip %r, path string contains non-UTF8 characters", path_str)
        return None

    try:
        relative = Path(path).relative_to(root)
    except ValueError:
        LOGGER.warning("Skip %s, failed to get a path relative to %s", path_str, root)
        return None

    rel = relative.as_posix().lstrip("/")
    if not rel or rel == ".":
        LOGGER.warning("Skip %s, it is the source root itself", path_str)
        return None
    return rel


def document_id(source: str, relative: str) -> str:
    return f"{source}:{relative}"


def read_content(path: Path) -> str | None:
    """Read a note as UTF-8; undecodable files are skipped with a warning."""
    try:
        return Path(path).read_text(encoding="utf-8")
    except UnicodeDecodeError:
        LOGGER.warning("Skip %s, content is not valid UTF-8", path)
        return None


def build_document(
    source: str,
    relative: str,
    content: str,
    *,
    now: datetime | None = None,
) -> IndexedDocument:
    if now is None:
        now = datetime.now(timezone.utc)
    return IndexedDocument(
        id=document_id(source, relative),
        title=derive_title(content),
        body=content,
        source=source,
        path=relative,
        updated_at=now.replace(microsecond=0),
    )
