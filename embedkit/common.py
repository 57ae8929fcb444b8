"""Shared types and helpers: cache directories, tokenizer settings and normalisation."""

from __future__ import annotations

import json
import math
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Sequence

import numpy as np

DEFAULT_CACHE_DIR = ".fastembed_cache"
CACHE_DIR_ENV = "FASTEMBED_CACHE_DIR"

_EPSILON = np.float32(1e-12)
_READ_ERROR = (
    "Error building TokenizerFiles for UserDefinedEmbeddingModel. Could not read {} file."
)

Embedding = list[float]


@dataclass(frozen=True)
class OnnxSource:
    """An ONNX model held either as bytes in memory or as a path on disk.

    A path is preferred for large models with external data files, since the
    runtime resolves companion ``.onnx.data`` files from the same directory.
    """

    source: bytes | Path

    def __post_init__(self) -> None:
        value = self.source
        if isinstance(value, (bytes, bytearray, memoryview)):
            object.__setattr__(self, "source", bytes(value))
        elif isinstance(value, (str, os.PathLike)):
            object.__setattr__(self, "source", Path(value))
        else:
            raise TypeError(
                f"OnnxSource expects bytes or a path, got {type(value).__name__}"
            )

    @property
    def is_file(self) -> bool:
        """True when the model is referenced by a filesystem path."""
        return isinstance(self.source, Path)


@dataclass
class SparseEmbedding:
    """A sparse vector given as parallel lists of indices and values."""

    indices: list[int]
    values: list[float]


@dataclass(frozen=True)
class TokenizerFiles:
    """Raw contents of the four files that describe a tokenizer."""

    tokenizer_file: bytes
    config_file: bytes
    special_tokens_map_file: bytes
    tokenizer_config_file: bytes


@dataclass(frozen=True)
class SpecialToken:
    """A token added to the tokenizer's vocabulary as a special token."""

    content: str
    special: bool = True
    single_word: bool = False
    lstrip: bool = False
    rstrip: bool = False
    normalized: bool = True


@dataclass(frozen=True)
class TokenizerSettings:
    """Tokenizer definition plus the padding, truncation and special-token settings.

    Padding is always to the longest sequence of a batch.
    """

    tokenizer: dict[str, Any]
    max_length: int
    pad_id: int
    pad_token: str
    special_tokens: tuple[SpecialToken, ...]


def get_cache_dirs() -> list[Path]:
    """Return every configured cache directory, in search order.

    ``FASTEMBED_CACHE_DIR`` may hold one path or a colon-separated list.
    """
    raw = os.environ.get(CACHE_DIR_ENV, DEFAULT_CACHE_DIR)
    return [Path(part) for part in raw.split(":") if part]


def get_cache_dir() -> str:
    """Return the first configured cache directory."""
    dirs = get_cache_dirs()
    return str(dirs[0]) if dirs else DEFAULT_CACHE_DIR


def find_model_cache_dir(model_code: str, dirs: Iterable[str | os.PathLike]) -> Path | None:
    """Return the first directory holding a complete hub snapshot of ``model_code``."""
    dir_name = "models--" + model_code.replace("/", "--")
    for directory in map(Path, dirs):
        model_dir = directory / dir_name
        try:
            revision = (model_dir / "refs" / "main").read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError):
            continue
        if (model_dir / "snapshots" / revision.strip()).exists():
            return directory
    return None


def _parse_json(data: bytes, file_name: str) -> Any:
    try:
        return json.loads(data)
    except ValueError as exc:
        raise ValueError(_READ_ERROR.format(file_name)) from exc


def _lookup(document: Any, key: str) -> Any:
    return document.get(key) if isinstance(document, dict) else None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _special_token(value: Any) -> SpecialToken | None:
    if isinstance(value, str):
        return SpecialToken(content=value)
    if isinstance(value, dict):
        content = value.get("content")
        flags = [value.get(name) for name in ("single_word", "lstrip", "rstrip", "normalized")]
        if isinstance(content, str) and all(isinstance(flag, bool) for flag in flags):
            single_word, lstrip, rstrip, normalized = flags
            return SpecialToken(
                content=content,
                single_word=single_word,
                lstrip=lstrip,
                rstrip=rstrip,
                normalized=normalized,
            )
    return None


def load_tokenizer_settings(tokenizer_files: TokenizerFiles, max_length: int) -> TokenizerSettings:
    """Parse tokenizer files and work out padding, truncation and special tokens.

    Raises ``ValueError`` when a file is not valid JSON or a required entry is missing.
    """
    config = _parse_json(tokenizer_files.config_file, "config.json")
    special_tokens_map = _parse_json(
        tokenizer_files.special_tokens_map_file, "special_tokens_map.json"
    )
    tokenizer_config = _parse_json(
        tokenizer_files.tokenizer_config_file, "tokenizer_config.json"
    )
    tokenizer = _parse_json(tokenizer_files.tokenizer_file, "tokenizer.json")
    if not isinstance(tokenizer, dict):
        raise ValueError(_READ_ERROR.format("tokenizer.json"))

    model_max_length = _lookup(tokenizer_config, "model_max_length")
    if not _is_number(model_max_length):
        raise ValueError("Error reading model_max_length from tokenizer_config.json")
    limit = float(model_max_length)
    if limit < max_length:
        max_length = max(0, math.trunc(limit))

    pad_token_id = _lookup(config, "pad_token_id")
    if isinstance(pad_token_id, int) and not isinstance(pad_token_id, bool) and pad_token_id >= 0:
        pad_id = pad_token_id & 0xFFFFFFFF
    else:
        pad_id = 0

    pad_token = _lookup(tokenizer_config, "pad_token")
    if not isinstance(pad_token, str):
        raise ValueError("Error reading pad_token from tokenizer_config.json")

    special_tokens: tuple[SpecialToken, ...] = ()
    if isinstance(special_tokens_map, dict):
        special_tokens = tuple(
            token
            for token in map(_special_token, special_tokens_map.values())
            if token is not None
        )

    return TokenizerSettings(
        tokenizer=tokenizer,
        max_length=max_length,
        pad_id=pad_id,
        pad_token=pad_token,
        special_tokens=special_tokens,
    )


def normalize(v: Sequence[float]) -> Embedding:
    """Scale ``v`` to unit L2 norm; a tiny epsilon keeps zero vectors finite."""
    array = np.asarray(v, dtype=np.float32)
    norm = np.sqrt(np.sum(array * array, dtype=np.float32))
    return (array / (norm + _EPSILON)).astype(np.float32).tolist()