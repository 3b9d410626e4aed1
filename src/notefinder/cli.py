"""Command line interface for NoteFinder."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from notefinder.config import AppConfig, ConfigError, get_default_config_path
from notefinder.index.indexer import Indexer
from notefinder.index.search import Searcher, SourceNotFoundError
from notefinder.index.storage import FullTextIndex, SchemaMismatchError, create_index
from notefinder.index.tokenizers import TokenizerError
from notefinder.index.watermark import WatermarkError, WatermarkStore

LOGGER = logging.getLogger(__name__)

console = Console()
app = typer.Typer(help="NoteFinder - local full-text search for markdown and text notes")


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")


def _load_config(config_path: Optional[Path]) -> AppConfig:
    path = config_path if config_path is not None else get_default_config_path()
    try:
        return AppConfig.load(path)
    except ConfigError as exc:
        console.print(f"[red]Failed to load {path}: {exc}[/red]")
        raise typer.Exit(code=1) from exc


def _open_index(config: AppConfig, index_name: str) -> FullTextIndex:
    index_config = config.indexes[index_name]
    try:
        schema_config = config.get_schema(index_config.schema)
        return create_index(index_config.get_path(index_name), schema_config, config.tokenizers)
    except (ConfigError, TokenizerError, SchemaMismatchError, OSError) as exc:
        console.print(f"[red]Failed to open index '{index_name}': {exc}[/red]")
        raise typer.Exit(code=1) from exc


def _load_watermarks() -> WatermarkStore | None:
    try:
        return WatermarkStore.load()
    except WatermarkError as exc:
        LOGGER.error("Incremental indexing unavailable: %s", exc)
        return None


def _choose_increment(full: bool, increment: bool, incrementable: bool) -> bool:
    if full:
        return False
    if increment:
        if not incrementable:
            console.print("[red]Cannot execute incremental index.[/red]")
            raise typer.Exit(code=1)
        return True
    if incrementable:
        return True
    LOGGER.warning("Fall back to full index.")
    return False


@app.command()
def index(
    indexes: Optional[List[str]] = typer.Option(
        None, "--index", "-i", help="Only index these indexes (repeatable)."
    ),
    full: bool = typer.Option(False, "--full", help="Re-index every file."),
    increment: bool = typer.Option(
        False, "--increment", help="Only index files changed since the last run."
    ),
    file: Optional[Path] = typer.Option(
        None, "--file", "-f", help="Re-index a single file.", exists=True, dir_okay=False
    ),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Config file path"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Index the sources of the configured indexes."""
    _setup_logging(verbose)
    if full and increment:
        raise typer.BadParameter("--full and --increment cannot be used together")
    config = _load_config(config_path)

    selected = list(indexes or [])
    for name in selected:
        if name not in config.indexes:
            LOGGER.warning("Unknown index '%s', ignoring it", name)
    targets = [name for name in config.indexes if not selected or name in selected]
    if not targets:
        console.print("[yellow]No indexes to process.[/yellow]")
        return

    # Open everything first so configuration errors stop the run before any writes.
    opened = {name: _open_index(config, name) for name in targets}

    if file is not None:
        indexer = Indexer()
    else:
        watermarks = _load_watermarks()
        indexer = Indexer(
            watermarks,
            increment=_choose_increment(full, increment, watermarks is not None),
        )

    failed = False
    for name, full_text_index in opened.items():
        sources = config.indexes[name].sources
        if file is not None:
            stats = indexer.index_file(name, full_text_index, sources, file)
        else:
            stats = indexer.index(name, full_text_index, sources)
        for source, error in stats.failed_sources.items():
            console.print(f"[red]Failed to index {name}/{source}: {error}[/red]")
        failed = failed or not stats.ok
        console.print(f"{indexer.indexed_count} documents were indexed.")

    if failed:
        raise typer.Exit(code=1)


@app.command()
def search(
    query: List[str] = typer.Argument(..., help="Query text"),
    index_name: Optional[str] = typer.Option(None, "--index", "-i", help="Index to search"),
    limit: Optional[int] = typer.Option(None, "--limit", "-l", min=1, help="Number of results"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Config file path"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Search an index."""
    _setup_logging(verbose)
    config = _load_config(config_path)

    if index_name is None:
        try:
            index_name = config.get_default_search_index_name()
        except ConfigError as exc:
            console.print(f"[red]Please specify the index to search, {exc}[/red]")
            raise typer.Exit(code=1) from exc

    index_config = config.indexes.get(index_name)
    if index_config is None:
        console.print(f"[red]Failed to get the index config named '{index_name}'.[/red]")
        raise typer.Exit(code=1)

    full_text_index = _open_index(config, index_name)
    searcher = Searcher(full_text_index)
    docs = searcher.search(" ".join(query), limit=limit or config.get_default_search_limit())
    if not docs:
        console.print("[yellow]No matches found.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Title")
    table.add_column("Updated")
    table.add_column("Path")

    for doc in docs:
        try:
            doc_path = doc.absolute_path(index_config.sources)
        except SourceNotFoundError as exc:
            LOGGER.error("%s", exc)
            continue
        LOGGER.debug("%r", doc)
        table.add_row(doc.title, doc.updated_at.isoformat(), str(doc_path))

    console.print(table)
