"""Error types raised by the chunking engine."""
from __future__ import annotations


class ChunkError(Exception):
    """Base class for chunking failures."""


class ParseError(ChunkError):
    """Scope-graph construction failed for a file."""

    def __init__(self, lang_id: str, reason: str) -> None:
        super().__init__(f"failed to parse file as {lang_id or '<unknown>'}: {reason}")
        self.lang_id = lang_id
        self.reason = reason


class IndexChunkBuildError(ChunkError):
    """Token splitting received input it cannot work with (e.g. a zero budget)."""


__all__ = ["ChunkError", "ParseError", "IndexChunkBuildError"]
