"""Per (index, source) timestamps of the last completed indexing pass."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Tuple

from notefinder.config import get_data_dir

WATERMARK_FILENAME = "watermarks.json"

logger = logging.getLogger(__name__)


class WatermarkError(Exception):
    """Base error for the watermark table."""


class WatermarkParseError(WatermarkError):
    """The persisted table exists but cannot be understood."""


class WatermarkSaveError(WatermarkError):
    """The table could not be written; the in-memory value is kept."""


def default_watermark_path() -> Path:
    return get_data_dir() / WATERMARK_FILENAME


def _make_key(index: str, source: str) -> str:
    return f"{index}:{source}"


def _split_key(key: str) -> Tuple[str, str]:
    index, sep, source = key.partition(":")
    if not sep:
        raise WatermarkParseError(f"Invalid watermark key {key!r}, expected '<index>:<source>'")
    return index, source


def _parse_timestamp(key: str, value: object) -> datetime:
    if not isinstance(value, str):
        raise WatermarkParseError(f"Invalid timestamp for {key!r}: {value!r}")
    try:
        timestamp = datetime.fromisoformat(value)
    except ValueError as exc:
        raise WatermarkParseError(f"Invalid timestamp for {key!r}: {value!r}") from exc
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    return timestamp


class WatermarkStore:
    """Mapping of (index name, source name) to the start time of the last
    successful pass over that source.

    The whole table is rewritten on every update. The store is not safe for
    concurrent updates from several threads or processes.
    """

    def __init__(self, path: Path, entries: Dict[Tuple[str, str], datetime] | None = None) -> None:
        self.path = Path(path)
        self._entries: Dict[Tuple[str, str], datetime] = dict(entries or {})

    @classmethod
    def load(cls, path: Path | None = None) -> WatermarkStore:
        """Read the table at ``path``; a missing file yields an empty store."""
        path = Path(path) if path is not None else default_watermark_path()
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.debug("No watermark table at %s, starting empty", path)
            return cls(path)
        except (OSError, UnicodeDecodeError) as exc:
            raise WatermarkError(f"Failed to read {path}: {exc}") from exc

        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise WatermarkParseError(f"Failed to parse {path}: {exc}") from exc
        if not isinstance(payload, dict):
            raise WatermarkParseError(f"Failed to parse {path}: expected a JSON object")

        entries = {_split_key(key): _parse_timestamp(key, value) for key, value in payload.items()}
        return cls(path, entries)

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, index: str, source: str) -> datetime | None:
        return self._entries.get((index, source))

    def update_and_save(self, index: str, source: str, timestamp: datetime) -> None:
        """Record ``timestamp`` for (index, source) and rewrite the table.

        Raises :class:`WatermarkSaveError` if writing fails; the new value is
        still kept in memory.
        """
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        self._entries[(index, source)] = timestamp
        self.save()

    def save(self) -> None:
        payload = {
            _make_key(index, source): timestamp.astimezone(timezone.utc).isoformat()
            for (index, source), timestamp in sorted(self._entries.items())
        }
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    json.dump(payload, handle, indent=2)
                    handle.write("\n")
                os.replace(tmp_name, self.path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise WatermarkSaveError(f"Failed to save {self.path}: {exc}") from exc
