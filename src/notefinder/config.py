"""Application configuration loading."""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict

APP_NAME = "notefinder"
DEFAULT_SEARCH_LIMIT = 10


class ConfigError(Exception):
    """Raised when the configuration file cannot be read or is invalid."""


class SchemaNotFoundError(ConfigError):
    def __init__(self, schema_name: str) -> None:
        super().__init__(f"Not found schema '{schema_name}'")
        self.schema_name = schema_name


class NoDefaultIndexNameError(ConfigError):
    def __init__(self) -> None:
        super().__init__("Not found default index name")


def xdg_config_home() -> Path:
    value = os.environ.get("XDG_CONFIG_HOME")
    if value:
        return Path(value)
    if os.name == "nt" and os.environ.get("LOCALAPPDATA"):
        return Path(os.environ["LOCALAPPDATA"])
    return Path.home() / ".config"


def xdg_data_home() -> Path:
    value = os.environ.get("XDG_DATA_HOME")
    if value:
        return Path(value)
    if os.name == "nt" and os.environ.get("APPDATA"):
        return Path(os.environ["APPDATA"])
    return Path.home() / ".local" / "share"


def get_default_config_path() -> Path:
    return xdg_config_home() / APP_NAME / "config.toml"


def get_data_dir() -> Path:
    """Directory holding index data and the watermark table."""
    return xdg_data_home() / APP_NAME


class SplitMode(str, Enum):
    """Sudachi split granularity, from shortest (A) to longest (C) units."""

    A = "A"
    B = "B"
    C = "C"


@dataclass(slots=True, frozen=True)
class RawTokenizerConfig:
    pass


@dataclass(slots=True, frozen=True)
class SudachiTokenizerConfig:
    dict_path: Path
    mode: SplitMode = SplitMode.C


TokenizerConfig = RawTokenizerConfig | SudachiTokenizerConfig


@dataclass(slots=True, frozen=True)
class FieldConfig:
    tokenizer: str = ""


@dataclass(slots=True, frozen=True)
class SchemaConfig:
    title: FieldConfig = field(default_factory=FieldConfig)
    body: FieldConfig = field(default_factory=FieldConfig)


@dataclass(slots=True)
class IndexConfig:
    schema: str
    sources: Dict[str, Path]
    path: Path | None = None

    def get_path(self, index_name: str) -> Path:
        """Return the index directory, defaulting to the data directory."""
        if self.path is not None:
            return self.path
        return get_data_dir() / "indexes" / index_name


@dataclass(slots=True)
class AppConfig:
    indexes: Dict[str, IndexConfig] = field(default_factory=dict)
    schemas: Dict[str, SchemaConfig] = field(default_factory=dict)
    tokenizers: Dict[str, TokenizerConfig] = field(default_factory=dict)
    default_search_index: str | None = None
    default_search_limit: int | None = None

    @classmethod
    def load(cls, config_path: Path) -> AppConfig:
        try:
            with Path(config_path).open("rb") as handle:
                payload = tomllib.load(handle)
        except OSError as exc:
            raise ConfigError(str(exc)) from exc
        except tomllib.TOMLDecodeError as exc:
            raise ConfigError(f"{config_path}: {exc}") from exc
        return cls.from_dict(payload)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> AppConfig:
        search_opts = _get_table(_get_table(payload, "default_opts"), "search", "default_opts.search")
        default_index = search_opts.get("index")
        if default_index is not None and not isinstance(default_index, str):
            raise ConfigError("Config field 'default_opts.search.index' must be a string.")
        default_limit = search_opts.get("limit")
        if default_limit is not None and (
            not isinstance(default_limit, int) or isinstance(default_limit, bool) or default_limit < 1
        ):
            raise ConfigError("Config field 'default_opts.search.limit' must be a positive integer.")

        return cls(
            indexes={
                name: _parse_index(name, table)
                for name, table in _get_table(payload, "indexes").items()
            },
            schemas={
                name: _parse_schema(name, table)
                for name, table in _get_table(payload, "schema").items()
            },
            tokenizers={
                name: _parse_tokenizer(name, table)
                for name, table in _get_table(payload, "tokenizers").items()
            },
            default_search_index=default_index,
            default_search_limit=default_limit,
        )

    def get_schema(self, name: str) -> SchemaConfig:
        try:
            return self.schemas[name]
        except KeyError:
            raise SchemaNotFoundError(name) from None

    def get_default_search_index_name(self) -> str:
        """Pick the search index: configured default, else the only index."""
        if self.default_search_index is not None:
            return self.default_search_index
        if len(self.indexes) == 1:
            return next(iter(self.indexes))
        raise NoDefaultIndexNameError()

    def get_default_search_limit(self) -> int:
        return self.default_search_limit or DEFAULT_SEARCH_LIMIT


def _get_table(payload: Dict[str, Any], key: str, label: str | None = None) -> Dict[str, Any]:
    value = payload.get(key, {})
    if not isinstance(value, dict):
        raise ConfigError(f"Config section '{label or key}' must be a table.")
    return value


def _expand_path(value: Any, label: str) -> Path:
    if not isinstance(value, str) or not value:
        raise ConfigError(f"Config field '{label}' must be a non-empty path string.")
    return Path(value).expanduser()


def _parse_index(name: str, table: Any) -> IndexConfig:
    if not isinstance(table, dict):
        raise ConfigError(f"Config section 'indexes.{name}' must be a table.")
    # Watermark keys are "<index>:<source>" and split at the first colon.
    if ":" in name:
        raise ConfigError(f"Index name '{name}' must not contain ':'.")
    schema = table.get("schema")
    if not isinstance(schema, str):
        raise ConfigError(f"Config field 'indexes.{name}.schema' must be a string.")
    sources = {
        source: _expand_path(root, f"indexes.{name}.sources.{source}")
        for source, root in _get_table(table, "sources", f"indexes.{name}.sources").items()
    }
    path = table.get("path")
    return IndexConfig(
        schema=schema,
        sources=sources,
        path=_expand_path(path, f"indexes.{name}.path") if path is not None else None,
    )


def _parse_field(table: Dict[str, Any], key: str, label: str) -> FieldConfig:
    value = _get_table(table, key, label)
    tokenizer = value.get("tokenizer", "")
    if not isinstance(tokenizer, str):
        raise ConfigError(f"Config field '{label}.tokenizer' must be a string.")
    return FieldConfig(tokenizer=tokenizer)


def _parse_schema(name: str, table: Any) -> SchemaConfig:
    if not isinstance(table, dict):
        raise ConfigError(f"Config section 'schema.{name}' must be a table.")
    fields = _get_table(table, "fields", f"schema.{name}.fields")
    return SchemaConfig(
        title=_parse_field(fields, "title", f"schema.{name}.fields.title"),
        body=_parse_field(fields, "body", f"schema.{name}.fields.body"),
    )


def _parse_tokenizer(name: str, table: Any) -> TokenizerConfig:
    if not isinstance(table, dict):
        raise ConfigError(f"Config section 'tokenizers.{name}' must be a table.")
    kind = table.get("tokenizer")
    if kind == "raw":
        return RawTokenizerConfig()
    if kind == "sudachi":
        mode = table.get("mode", SplitMode.C.value)
        try:
            split_mode = SplitMode(mode)
        except ValueError:
            raise ConfigError(
                f"Config field 'tokenizers.{name}.mode' must be one of A, B, C (got {mode!r})."
            ) from None
        return SudachiTokenizerConfig(
            dict_path=_expand_path(table.get("dict"), f"tokenizers.{name}.dict"),
            mode=split_mode,
        )
    raise ConfigError(f"Unknown tokenizer {kind!r} in 'tokenizers.{name}'.")
