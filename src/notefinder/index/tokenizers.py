"""Tokenizer plugins registered by name on a full-text index."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Mapping, Protocol

from notefinder.config import (
    RawTokenizerConfig,
    SplitMode,
    SudachiTokenizerConfig,
    TokenizerConfig,
)

RAW_TOKENIZER_NAME = "_raw"

logger = logging.getLogger(__name__)


class TokenizerError(Exception):
    """Raised when a tokenizer cannot be created."""


class TokenizerNotFoundError(TokenizerError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Tokenizer '{name}' is not registered")
        self.name = name


class Tokenizer(Protocol):
    def tokenize(self, text: str) -> List[str]: ...


class RawTokenizer:
    """Pass-through tokenizer: the whole value is a single token."""

    def tokenize(self, text: str) -> List[str]:
        return [text] if text else []


class SudachiTokenizer:
    """Morphological tokenizer backed by SudachiPy."""

    def __init__(self, dict_path: Path, mode: SplitMode = SplitMode.C) -> None:
        try:
            from sudachipy import Dictionary
            from sudachipy import SplitMode as SudachiSplitMode
        except ImportError as exc:
            raise TokenizerError(
                "sudachipy is not installed. Install the Japanese extras with "
                "\"python -m pip install 'notefinder[ja]'\""
            ) from exc

        self.dict_path = Path(dict_path)
        self.mode = mode
        logger.debug("Loading Sudachi dictionary %s (mode %s)", self.dict_path, mode.value)
        try:
            dictionary = Dictionary(dict=str(self.dict_path))
        except Exception as exc:
            raise TokenizerError(f"Failed to load Sudachi dictionary {self.dict_path}: {exc}") from exc
        self._tokenizer = dictionary.create(mode=getattr(SudachiSplitMode, mode.value))

    def tokenize(self, text: str) -> List[str]:
        tokens: List[str] = []
        # Sudachi rejects very long inputs, so analyse line by line.
        for line in text.splitlines():
            if not line.strip():
                continue
            tokens.extend(
                surface
                for surface in (m.surface() for m in self._tokenizer.tokenize(line))
                if surface.strip()
            )
        return tokens


def create_tokenizer(config: TokenizerConfig) -> Tokenizer:
    if isinstance(config, SudachiTokenizerConfig):
        return SudachiTokenizer(config.dict_path, config.mode)
    if isinstance(config, RawTokenizerConfig):
        return RawTokenizer()
    raise TokenizerError(f"Unsupported tokenizer config: {config!r}")


class TokenizerRegistry:
    """Name to tokenizer mapping; the raw tokenizer is always available."""

    def __init__(self) -> None:
        self._tokenizers: Dict[str, Tokenizer] = {RAW_TOKENIZER_NAME: RawTokenizer()}

    @classmethod
    def from_config(cls, configs: Mapping[str, TokenizerConfig]) -> TokenizerRegistry:
        registry = cls()
        for name, config in configs.items():
            registry.register(name, create_tokenizer(config))
        return registry

    def register(self, name: str, tokenizer: Tokenizer) -> None:
        self._tokenizers[name] = tokenizer

    def get(self, name: str) -> Tokenizer:
        try:
            return self._tokenizers[name]
        except KeyError:
            raise TokenizerNotFoundError(name) from None

    def __contains__(self, name: object) -> bool:
        return name in self._tokenizers
