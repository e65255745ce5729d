"""Expand retrieval hits (IndexChunk) into LLM-ready ContextChunks."""
from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from .Chunk import ContextChunk, IndexChunk, RefillOptions, renumber_aliases
from .LineMapper import byte_range_for_lines, compute_line_starts
from .scope_graph import TextRange, top_level_ranges
from .scope_registry import parse_scopes

logger = logging.getLogger(__name__)

REASON_ENCLOSING_SCOPE = "refill from enclosing top-level scope"
REASON_FALLBACK_WINDOW = "refill fallback window"


def refill_chunks(
        path: str,
        src: bytes,
        lang_id: str,
        hits: Sequence[IndexChunk],
        opt: RefillOptions = RefillOptions(),
) -> List[ContextChunk]:
    """
    Map every hit to the smallest top-level scope containing its byte range, or to a
    `fallback_window_lines` window centred on its first line when no scope contains it.
    One ContextChunk per hit, aliases 0..n-1 in hit order.

    Raises:
        ParseError: the file cannot be parsed. Refill only runs on files that were parsed
        for indexing, so this is not degraded.
    """
    data = bytes(src)
    scopes = top_level_ranges(parse_scopes(data, lang_id))
    line_starts = compute_line_starts(data)
    total_lines = len(line_starts) - 1

    out: List[ContextChunk] = []
    for hit in hits:
        best = smallest_enclosing_scope(scopes, hit.start_byte, hit.end_byte)
        if best is not None:
            out.append(ContextChunk(
                path=path,
                alias=0,
                snippet=data[best.start_byte:best.end_byte].decode("utf-8", errors="replace"),
                start_line=best.start.line,
                end_line=best.end.line,
                reason=REASON_ENCLOSING_SCOPE,
            ))
            continue

        half = opt.fallback_window_lines // 2
        start0 = max(hit.start_line - half, 0)
        end0 = min(hit.start_line + half, max(total_lines - 1, 0))
        b0, b1 = byte_range_for_lines(line_starts, start0, end0)
        out.append(ContextChunk(
            path=path,
            alias=0,
            snippet=data[b0:b1].decode("utf-8", errors="replace") if b1 > b0 else "",
            start_line=start0,
            end_line=end0,
            reason=REASON_FALLBACK_WINDOW,
        ))

    logger.debug("Refilled %d hits in %s", len(out), path)
    return renumber_aliases(out)


def smallest_enclosing_scope(scopes: Sequence[TextRange], start_byte: int, end_byte: int) -> Optional[TextRange]:
    """Smallest scope containing [start_byte, end_byte); the first one seen wins a size tie."""
    best: Optional[TextRange] = None
    for rng in scopes:
        if rng.contains(start_byte, end_byte) and (best is None or rng.size() < best.size()):
            best = rng
    return best


__all__ = [
    "REASON_ENCLOSING_SCOPE",
    "REASON_FALLBACK_WINDOW",
    "refill_chunks",
    "smallest_enclosing_scope",
]
