"""SQLite FTS5 full-text store."""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Mapping

from notefinder.config import SchemaConfig, TokenizerConfig
from notefinder.index.schema import Field, FieldKind, IndexSchema, build_schema
from notefinder.index.tokenizers import TokenizerNotFoundError, TokenizerRegistry

DB_FILENAME = "index.sqlite3"

logger = logging.getLogger(__name__)


class SchemaMismatchError(Exception):
    """Raised when an existing index was created with a different schema."""


def _quote(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def _phrase(text: str) -> str:
    return '"' + text.replace('"', '""') + '"'


def _has_word(text: str) -> bool:
    return any(ch.isalnum() for ch in text)


def _connect(db_path: Path) -> sqlite3.Connection:
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    return conn


class FullTextIndex:
    """A named full-text collection stored in a single SQLite database.

    Stored and exact-match fields live in the ``documents`` table; analysed
    text fields live in the ``documents_fts`` FTS5 table sharing its rowid.
    Tokenizers registered on the index pre-split text before it reaches FTS5,
    so the same analysis is applied to documents and queries.
    """

    def __init__(self, path: Path, schema: IndexSchema, tokenizers: TokenizerRegistry) -> None:
        self.path = Path(path)
        self.schema = schema
        self.tokenizers = tokenizers
        self.db_path = self.path / DB_FILENAME

    @classmethod
    def open_or_create(
        cls,
        path: Path,
        schema: IndexSchema,
        tokenizers: TokenizerRegistry | None = None,
    ) -> FullTextIndex:
        index = cls(path, schema, tokenizers or TokenizerRegistry())
        for field in schema.full_text_fields:
            if field.tokenizer and field.tokenizer not in index.tokenizers:
                raise TokenizerNotFoundError(field.tokenizer)

        index.path.mkdir(parents=True, exist_ok=True)
        conn = _connect(index.db_path)
        try:
            index._ensure_schema(conn)
        finally:
            conn.close()
        return index

    def _ensure_schema(self, conn: sqlite3.Connection) -> None:
        with conn:
            conn.execute("CREATE TABLE IF NOT EXISTS meta (key TEXT PRIMARY KEY, value TEXT NOT NULL)")
            row = conn.execute("SELECT value FROM meta WHERE key = 'schema'").fetchone()
            if row is not None:
                existing = IndexSchema.from_dict(json.loads(row["value"]))
                if existing != self.schema:
                    raise SchemaMismatchError(
                        f"Index at {self.path} was created with a different schema"
                    )
                return

            columns = ["doc_id INTEGER PRIMARY KEY"]
            columns.extend(
                f"{_quote(f.name)} {'INTEGER' if f.kind is FieldKind.DATE else 'TEXT'}"
                for f in self._row_fields
            )
            conn.execute(f"CREATE TABLE documents ({', '.join(columns)})")
            for field in self.schema.exact_fields:
                conn.execute(
                    f"CREATE INDEX {_quote('idx_documents_' + field.name)} "
                    f"ON documents({_quote(field.name)})"
                )
            fts_columns = ", ".join(_quote(f.name) for f in self.schema.full_text_fields)
            conn.execute(
                f"CREATE VIRTUAL TABLE documents_fts USING fts5({fts_columns}, tokenize='unicode61')"
            )
            conn.execute(
                "INSERT INTO meta (key, value) VALUES ('schema', ?)",
                (json.dumps(self.schema.to_dict()),),
            )

    @property
    def _row_fields(self) -> List[Field]:
        return [f for f in self.schema if f.stored or f.exact]

    def connect(self) -> sqlite3.Connection:
        return _connect(self.db_path)

    def writer(self) -> IndexWriter:
        return IndexWriter(self)

    def reader(self) -> IndexReader:
        return IndexReader(self)

    def analyze(self, field: Field, text: str) -> str:
        """Return ``text`` as the token stream FTS5 should see for ``field``."""
        if not field.tokenizer:
            return text
        return " ".join(self.tokenizers.get(field.tokenizer).tokenize(text))

    def match_expression(self, query: str) -> str:
        """Build an FTS5 expression requiring every query term in some field."""
        clauses = []
        for term in query.split():
            alternatives = []
            for field in self.schema.full_text_fields:
                analysed = self.analyze(field, term)
                if _has_word(analysed):
                    alternatives.append(f"{{{field.name}}} : {_phrase(analysed)}")
            if alternatives:
                clauses.append("(" + " OR ".join(alternatives) + ")")
        return " AND ".join(clauses)

    def encode(self, field: Field, value: Any) -> Any:
        if value is None:
            return None
        if field.kind is FieldKind.DATE:
            if isinstance(value, datetime):
                return int(value.timestamp())
            return int(value)
        return str(value)


class IndexWriter:
    """Pending changes to an index; nothing is visible to readers until commit."""

    def __init__(self, index: FullTextIndex) -> None:
        self.index = index
        self._conn = index.connect()
        self._row_fields = index._row_fields
        self._fts_fields = index.schema.full_text_fields
        self.pending = 0

    def __enter__(self) -> IndexWriter:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def add_document(self, document: Mapping[Field, Any]) -> int:
        values: Dict[str, Any] = {}
        for field, value in document.items():
            # Raises for fields that are not part of this index.
            self.index.schema.get_field(field.name)
            values[field.name] = value

        columns = ", ".join(_quote(f.name) for f in self._row_fields)
        placeholders = ", ".join("?" for _ in self._row_fields)
        doc_id = self._conn.execute(
            f"INSERT INTO documents ({columns}) VALUES ({placeholders})",
            [self.index.encode(f, values.get(f.name)) for f in self._row_fields],
        ).lastrowid

        fts_columns = ", ".join(_quote(f.name) for f in self._fts_fields)
        fts_placeholders = ", ".join("?" for _ in self._fts_fields)
        self._conn.execute(
            f"INSERT INTO documents_fts (rowid, {fts_columns}) VALUES (?, {fts_placeholders})",
            [doc_id, *(self.index.analyze(f, str(values.get(f.name) or "")) for f in self._fts_fields)],
        )
        self.pending += 1
        return doc_id

    def delete_term(self, field: Field, value: Any) -> int:
        """Delete every document whose exact-match ``field`` equals ``value``."""
        if not field.exact:
            raise ValueError(f"Field '{field.name}' is not an exact-match field")
        column = _quote(field.name)
        encoded = self.index.encode(field, value)
        doc_ids = [
            row["doc_id"]
            for row in self._conn.execute(
                f"SELECT doc_id FROM documents WHERE {column} = ?", (encoded,)
            )
        ]
        if doc_ids:
            self._conn.executemany(
                "DELETE FROM documents_fts WHERE rowid = ?", [(doc_id,) for doc_id in doc_ids]
            )
            self._conn.execute(f"DELETE FROM documents WHERE {column} = ?", (encoded,))
            self.pending += 1
        return len(doc_ids)

    def commit(self) -> None:
        self._conn.commit()
        logger.debug("Committed %d change(s) to %s", self.pending, self.index.path)
        self.pending = 0

    def rollback(self) -> None:
        self._conn.rollback()
        self.pending = 0

    def close(self) -> None:
        """Discard uncommitted changes and release the connection."""
        self._conn.rollback()
        self._conn.close()


class IndexReader:
    """Read-only view over committed documents."""

    def __init__(self, index: FullTextIndex) -> None:
        self.index = index
        self._conn = index.connect()

    def __enter__(self) -> IndexReader:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        self._conn.close()

    def _stored(self, row: sqlite3.Row) -> Dict[str, Any]:
        return {f.name: row[f.name] for f in self.index.schema if f.stored}

    def search(self, query: str, limit: int = 10) -> List[Dict[str, Any]]:
        """Return stored fields of the best ``limit`` matches, best first."""
        expression = self.index.match_expression(query)
        if not expression or limit <= 0:
            return []
        rows = self._conn.execute(
            """
            SELECT d.*, bm25(documents_fts) AS bm25_score
            FROM documents_fts
            JOIN documents d ON d.doc_id = documents_fts.rowid
            WHERE documents_fts MATCH ?
            ORDER BY bm25_score
            LIMIT ?
            """,
            (expression, limit),
        ).fetchall()
        results = []
        for row in rows:
            result = self._stored(row)
            result["score"] = -float(row["bm25_score"])
            results.append(result)
        return results

    def term_docs(self, field: Field, value: Any) -> List[Dict[str, Any]]:
        """Return stored fields of documents whose exact-match ``field`` equals ``value``."""
        if not field.exact:
            raise ValueError(f"Field '{field.name}' is not an exact-match field")
        rows = self._conn.execute(
            f"SELECT * FROM documents WHERE {_quote(field.name)} = ? ORDER BY doc_id",
            (self.index.encode(field, value),),
        ).fetchall()
        return [self._stored(row) for row in rows]

    def num_docs(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM documents").fetchone()[0]


def create_index(
    index_path: Path,
    schema_config: SchemaConfig,
    tokenizer_configs: Mapping[str, TokenizerConfig],
) -> FullTextIndex:
    """Open (or create) the index at ``index_path`` for a configured schema."""
    return FullTextIndex.open_or_create(
        index_path,
        build_schema(schema_config),
        TokenizerRegistry.from_config(tokenizer_configs),
    )
