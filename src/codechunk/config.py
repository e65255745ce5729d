"""Environment-driven chunking options.

Unset or blank variables keep the dataclass defaults; malformed values raise ValueError
naming the offending variable.

    CODECHUNK_MAX_CHUNK_BYTES     ChunkOptions.max_chunk_bytes
    CODECHUNK_MAX_CHUNK_LINES     ChunkOptions.max_chunk_lines
    CODECHUNK_OVERLAP_LINES       ChunkOptions.overlap_lines
    CODECHUNK_FALLBACK_MAX_LINES  ChunkOptions.fallback_max_lines
    CODECHUNK_MIN_CHUNK_TOKENS    IndexChunkOptions.min_chunk_tokens
    CODECHUNK_MAX_CHUNK_TOKENS    IndexChunkOptions.max_chunk_tokens
    CODECHUNK_OVERLAP             IndexChunkOptions.overlap ("partial:0.5" or "lines:3")
    CODECHUNK_FALLBACK_LINES      IndexChunkOptions.fallback_lines
    CODECHUNK_REFILL_WINDOW_LINES RefillOptions.fallback_window_lines
"""
from __future__ import annotations

import os
from dataclasses import fields, replace
from typing import Dict, Mapping, Optional, TypeVar

from .Chunk import ByLines, ChunkOptions, IndexChunkOptions, OverlapStrategy, Partial, RefillOptions

O = TypeVar("O", ChunkOptions, IndexChunkOptions, RefillOptions)

_CHUNK_ENV = {
    "max_chunk_bytes": "CODECHUNK_MAX_CHUNK_BYTES",
    "max_chunk_lines": "CODECHUNK_MAX_CHUNK_LINES",
    "overlap_lines": "CODECHUNK_OVERLAP_LINES",
    "fallback_max_lines": "CODECHUNK_FALLBACK_MAX_LINES",
}
_INDEX_ENV = {
    "min_chunk_tokens": "CODECHUNK_MIN_CHUNK_TOKENS",
    "max_chunk_tokens": "CODECHUNK_MAX_CHUNK_TOKENS",
    "fallback_lines": "CODECHUNK_FALLBACK_LINES",
}
_REFILL_ENV = {
    "fallback_window_lines": "CODECHUNK_REFILL_WINDOW_LINES",
}
OVERLAP_ENV = "CODECHUNK_OVERLAP"


def _env_value(name: str, environ: Mapping[str, str]) -> str:
    return (environ.get(name) or "").strip()


def _env_int(name: str, environ: Mapping[str, str]) -> Optional[int]:
    raw = _env_value(name, environ)
    if not raw:
        return None
    try:
        value = int(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from e
    if value < 0:
        raise ValueError(f"{name} must be non-negative, got {value}")
    return value


def parse_overlap(raw: str) -> OverlapStrategy:
    """Parse "partial:<fraction>" or "lines:<n>"."""
    kind, sep, value = raw.strip().partition(":")
    kind = kind.strip().lower()
    if not sep:
        raise ValueError(f"overlap must look like 'partial:0.5' or 'lines:3', got {raw!r}")
    if kind == "partial":
        return Partial(float(value))
    if kind == "lines":
        return ByLines(int(value))
    raise ValueError(f"unknown overlap strategy {kind!r}")


def _apply(defaults: O, env_names: Dict[str, str], environ: Mapping[str, str]) -> O:
    known = {f.name for f in fields(defaults)}
    overrides = {}
    for attr, name in env_names.items():
        if attr not in known:
            continue
        value = _env_int(name, environ)
        if value is not None:
            overrides[attr] = value
    return replace(defaults, **overrides) if overrides else defaults


def load_chunk_options(environ: Optional[Mapping[str, str]] = None) -> ChunkOptions:
    return _apply(ChunkOptions(), _CHUNK_ENV, os.environ if environ is None else environ)


def load_index_options(environ: Optional[Mapping[str, str]] = None) -> IndexChunkOptions:
    env = os.environ if environ is None else environ
    opt = _apply(IndexChunkOptions(), _INDEX_ENV, env)
    raw = _env_value(OVERLAP_ENV, env)
    if raw:
        try:
            opt = replace(opt, overlap=parse_overlap(raw))
        except ValueError as e:
            raise ValueError(f"{OVERLAP_ENV}: {e}") from e
    return opt


def load_refill_options(environ: Optional[Mapping[str, str]] = None) -> RefillOptions:
    return _apply(RefillOptions(), _REFILL_ENV, os.environ if environ is None else environ)


__all__ = [
    "OVERLAP_ENV",
    "parse_overlap",
    "load_chunk_options",
    "load_index_options",
    "load_refill_options",
]
