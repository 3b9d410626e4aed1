"""Core NoteFinder data models."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict

if TYPE_CHECKING:
    from notefinder.index.schema import Field, IndexSchema


@dataclass(slots=True)
class IndexedDocument:
    """One note as it is fed to the full-text index."""

    id: str
    title: str
    body: str
    source: str
    path: str
    updated_at: datetime


@dataclass(slots=True, frozen=True)
class FieldHandles:
    """Schema fields resolved once per index open."""

    title: Field
    body: Field
    source: Field
    path: Field
    updated_at: Field
    id: Field

    @classmethod
    def resolve(cls, schema: IndexSchema) -> FieldHandles:
        """Look up every expected field, failing fast if one is missing."""
        return cls(
            title=schema.get_field("title"),
            body=schema.get_field("body"),
            source=schema.get_field("source"),
            path=schema.get_field("path"),
            updated_at=schema.get_field("updated_at"),
            id=schema.get_field("id"),
        )

    def to_fields(self, document: IndexedDocument) -> Dict[Field, Any]:
        return {
            self.title: document.title,
            self.body: document.body,
            self.source: document.source,
            self.path: document.path,
            self.updated_at: document.updated_at,
            self.id: document.id,
        }
