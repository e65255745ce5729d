import hashlib
import math
from dataclasses import dataclass, replace
from typing import Any, Dict, Iterable, List, Tuple, TypeVar


@dataclass(frozen=True)
class CodeChunk:
    path: str
    alias: int
    snippet: str
    start_line: int
    end_line: int

    def is_empty(self) -> bool:
        return not self.snippet.strip()

    def with_alias(self, alias: int) -> "CodeChunk":
        return replace(self, alias=alias)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "alias": self.alias,
            "snippet": self.snippet,
            "start": self.start_line,
            "end": self.end_line,
        }

    def __str__(self) -> str:
        return f"{self.alias}: {self.path}\n{self.snippet}"


@dataclass(frozen=True)
class IndexChunk:
    """
    Retrieval unit: bounded by a token budget, not guaranteed to be a complete construct.
    Hits are expanded back into ContextChunks by refill before reaching an LLM.
    """
    path: str
    start_byte: int
    end_byte: int
    start_line: int
    end_line: int
    text: str

    def id(self):
        id = f"{self.path}::{self.start_byte}::{self.end_byte}"
        return hashlib.sha256(id.encode()).hexdigest()

    def is_empty(self) -> bool:
        return not self.text.strip()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "start_byte": self.start_byte,
            "end_byte": self.end_byte,
            "start_line": self.start_line,
            "end_line": self.end_line,
            "text": self.text,
        }


@dataclass(frozen=True)
class ContextChunk:
    path: str
    alias: int
    snippet: str
    start_line: int
    end_line: int
    reason: str = ""

    def is_empty(self) -> bool:
        return not self.snippet.strip()

    def dedup_key(self) -> Tuple[str, int, int]:
        """(path, start_line, end_line): identifies a code region regardless of snippet or reason."""
        return (self.path, self.start_line, self.end_line)

    def with_alias(self, alias: int) -> "ContextChunk":
        return replace(self, alias=alias)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "alias": self.alias,
            "snippet": self.snippet,
            "start": self.start_line,
            "end": self.end_line,
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ContextChunk":
        return cls(
            path=str(data["path"]),
            alias=int(data.get("alias", 0)),
            snippet=str(data.get("snippet", "")),
            start_line=int(data["start"]),
            end_line=int(data["end"]),
            reason=str(data.get("reason") or ""),
        )


# ---------------- Options ----------------

class OverlapStrategy:
    """How far the next token split backs off from the end of the previous one."""

    def next_subdivision(self, max_tokens: int) -> int:
        raise NotImplementedError


@dataclass(frozen=True)
class ByLines(OverlapStrategy):
    lines: int

    def next_subdivision(self, max_tokens: int) -> int:
        return max(max_tokens - 1, 1)


@dataclass(frozen=True)
class Partial(OverlapStrategy):
    fraction: float = 0.5

    def __post_init__(self) -> None:
        if not 0.0 <= self.fraction <= 1.0:
            raise ValueError(f"overlap fraction must be within [0, 1], got {self.fraction}")

    def next_subdivision(self, max_tokens: int) -> int:
        # round half away from zero; max_tokens is never negative here
        return max(int(math.floor(max_tokens * self.fraction + 0.5)), 1)


@dataclass(frozen=True)
class ChunkOptions:
    max_chunk_bytes: int = 8 * 1024
    max_chunk_lines: int = 150
    overlap_lines: int = 20
    # window size used when the file has no usable top-level scope
    fallback_max_lines: int = 200


@dataclass(frozen=True)
class IndexChunkOptions:
    min_chunk_tokens: int = 50
    max_chunk_tokens: int = 256
    overlap: OverlapStrategy = Partial(0.5)
    fallback_lines: int = 120


@dataclass(frozen=True)
class RefillOptions:
    # line window around the hit when no enclosing top-level scope exists
    fallback_window_lines: int = 120


# ---------------- Normalisation ----------------

C = TypeVar("C", CodeChunk, ContextChunk)


def renumber_aliases(chunks: Iterable[C]) -> List[C]:
    """Return the chunks with aliases rewritten to 0..n-1 in iteration order."""
    return [c.with_alias(i) for i, c in enumerate(chunks)]


def dedup_context_chunks(chunks: Iterable[ContextChunk]) -> List[ContextChunk]:
    """
    Merge chunks sharing a (path, start_line, end_line) key.

    The first chunk for a key is kept; a later chunk only contributes its reason, appended
    with "; " when it is non-empty and not already part of the accumulated reason. Output is
    sorted by key and aliases are renumbered, so running this on its own output is a no-op.
    """
    uniq: Dict[Tuple[str, int, int], ContextChunk] = {}
    for c in chunks:
        key = c.dedup_key()
        existing = uniq.get(key)
        if existing is None:
            uniq[key] = c
            continue
        if not c.reason or c.reason == existing.reason or c.reason in existing.reason:
            continue
        merged = f"{existing.reason}; {c.reason}" if existing.reason else c.reason
        uniq[key] = replace(existing, reason=merged)

    return renumber_aliases(uniq[k] for k in sorted(uniq))


def dedup_index_hits(hits: Iterable[IndexChunk]) -> List[IndexChunk]:
    """Drop hits repeating a (path, start_byte, end_byte) range; first wins, sorted by range."""
    uniq: Dict[Tuple[str, int, int], IndexChunk] = {}
    for h in hits:
        uniq.setdefault((h.path, h.start_byte, h.end_byte), h)
    return [uniq[k] for k in sorted(uniq)]


__all__ = [
    "CodeChunk",
    "IndexChunk",
    "ContextChunk",
    "OverlapStrategy",
    "ByLines",
    "Partial",
    "ChunkOptions",
    "IndexChunkOptions",
    "RefillOptions",
    "renumber_aliases",
    "dedup_context_chunks",
    "dedup_index_hits",
]
