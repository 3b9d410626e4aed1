"""Full-text index schema."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterator, List, Tuple

from notefinder.config import SchemaConfig
from notefinder.index.tokenizers import RAW_TOKENIZER_NAME


class FieldNotFoundError(KeyError):
    def __init__(self, name: str) -> None:
        super().__init__(name)
        self.name = name

    def __str__(self) -> str:
        return f"Field '{self.name}' does not exist in the schema"


class FieldKind(str, Enum):
    TEXT = "text"
    DATE = "date"


@dataclass(slots=True, frozen=True)
class Field:
    """A named schema field.

    Text fields tokenized with the raw tokenizer and date fields are matched
    exactly; other text fields go through full-text analysis. An empty
    ``tokenizer`` selects the engine default.
    """

    name: str
    kind: FieldKind = FieldKind.TEXT
    tokenizer: str = ""
    stored: bool = False
    fast: bool = False

    @property
    def exact(self) -> bool:
        return self.kind is FieldKind.DATE or self.tokenizer == RAW_TOKENIZER_NAME

    @property
    def full_text(self) -> bool:
        return not self.exact


class IndexSchema:
    """Ordered collection of fields, addressable by name."""

    def __init__(self, fields: List[Field]) -> None:
        self._fields: Dict[str, Field] = {}
        for field in fields:
            if field.name in self._fields:
                raise ValueError(f"Duplicate field '{field.name}'")
            self._fields[field.name] = field

    def __iter__(self) -> Iterator[Field]:
        return iter(self._fields.values())

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, IndexSchema):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def get_field(self, name: str) -> Field:
        try:
            return self._fields[name]
        except KeyError:
            raise FieldNotFoundError(name) from None

    @property
    def full_text_fields(self) -> Tuple[Field, ...]:
        return tuple(f for f in self if f.full_text)

    @property
    def exact_fields(self) -> Tuple[Field, ...]:
        return tuple(f for f in self if f.exact)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fields": [
                {
                    "name": f.name,
                    "kind": f.kind.value,
                    "tokenizer": f.tokenizer,
                    "stored": f.stored,
                    "fast": f.fast,
                }
                for f in self
            ]
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> IndexSchema:
        return cls(
            [
                Field(
                    name=item["name"],
                    kind=FieldKind(item["kind"]),
                    tokenizer=item["tokenizer"],
                    stored=item["stored"],
                    fast=item["fast"],
                )
                for item in payload["fields"]
            ]
        )


def build_schema(config: SchemaConfig) -> IndexSchema:
    """Build the note schema with the configured title and body tokenizers."""
    return IndexSchema(
        [
            Field("title", tokenizer=config.title.tokenizer, stored=True),
            Field("body", tokenizer=config.body.tokenizer),
            Field("source", tokenizer=RAW_TOKENIZER_NAME, stored=True),
            Field("path", tokenizer=RAW_TOKENIZER_NAME, stored=True),
            Field("updated_at", kind=FieldKind.DATE, stored=True, fast=True),
            Field("id", tokenizer=RAW_TOKENIZER_NAME, stored=True),
        ]
    )
