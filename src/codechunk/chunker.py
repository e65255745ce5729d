# Chunking over a file's top-level scopes.
# - chunk_source: one CodeChunk per top-level scope; oversized scopes and scope-less files are
#   cut into overlapping line windows. Parse failure is fatal (ParseError).
# - index_chunks: token-budgeted IndexChunks for retrieval. Tiers, in order:
#     scopes (whole scope if it fits, else budgeted split inside it)
#     -> whole-file budgeted split -> fixed line windows.
#   Tokenizer failure, budget underflow and parse failure only ever degrade; nothing is raised.
# - All offsets are byte offsets into the source as given. str sources are UTF-8 encoded,
#   lone surrogates becoming "?". Tokenizers see a lossy decode; their offsets are mapped
#   back onto the source bytes before use.

from __future__ import annotations

import bisect
import codecs
import logging
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Sequence, Tuple, Union

from .Chunk import ChunkOptions, CodeChunk, IndexChunk, IndexChunkOptions, OverlapStrategy, renumber_aliases
from .errors import ChunkError, IndexChunkBuildError
from .LineMapper import LineMapper, byte_range_for_lines, compute_line_starts, point, token_range_for_byte_range
from .scope_graph import TextRange, top_level_ranges
from .scope_registry import parse_scopes
from .tokenization import Tokenizer, TokenizerError, is_continuation_token

logger = logging.getLogger(__name__)

# Room left for the special tokens the embedding model wraps every chunk with.
DEDUCT_SPECIAL_TOKENS = 2

Source = Union[bytes, bytearray, memoryview, str]


def _as_bytes(src: Source) -> bytes:
    return src.encode("utf-8", errors="replace") if isinstance(src, str) else bytes(src)


def _decode(data: bytes, start: int, end: int) -> str:
    return data[start:end].decode("utf-8", errors="replace")


# U+FFFD re-encodes to 3 bytes whatever the length of the invalid run it stands for.
_REPLACEMENT_LEN = len("\ufffd".encode("utf-8"))


def _lossy_text(data: bytes) -> Tuple[str, List[Tuple[int, int, int]]]:
    """
    Decode like errors="replace" and record every replaced run as
    (offset of its U+FFFD in the re-encoded text, raw start, raw end).
    """
    try:
        return data.decode("utf-8"), []
    except UnicodeDecodeError:
        pass

    view = memoryview(data)
    parts: List[str] = []
    marks: List[Tuple[int, int, int]] = []
    pos, out = 0, 0
    while pos < len(data):
        try:
            tail, _ = codecs.utf_8_decode(view[pos:], "strict", True)
        except UnicodeDecodeError as exc:
            head, _ = codecs.utf_8_decode(view[pos:pos + exc.start], "strict", True)
            parts.append(head)
            out += exc.start
            marks.append((out, pos + exc.start, pos + exc.end))
            parts.append("\ufffd")
            out += _REPLACEMENT_LEN
            pos += exc.end
            continue
        parts.append(tail)
        break
    return "".join(parts), marks


class _SourceOffsets:
    """Maps byte offsets of the re-encoded lossy text back onto the raw source bytes."""

    def __init__(self, marks: Sequence[Tuple[int, int, int]]) -> None:
        self.marks = list(marks)
        self.starts = [m[0] for m in self.marks]

    def __call__(self, offset: int) -> int:
        k = bisect.bisect_right(self.starts, offset) - 1
        if k < 0:
            return offset
        at, raw_start, raw_end = self.marks[k]
        if offset < at + _REPLACEMENT_LEN:
            return raw_start
        return raw_end + offset - at - _REPLACEMENT_LEN


# ---------------- Naive scope chunker ----------------

def chunk_source(path: str, src: Source, lang_id: str, opt: ChunkOptions = ChunkOptions()) -> List[CodeChunk]:
    """
    Chunk a file by its top-level scopes (functions, classes, impl blocks...).

    Steps:
      1) Parse the scope graph; a ParseError propagates to the caller.
      2) Emit top-level scopes in start-byte order: whole if ≤ max_chunk_bytes, otherwise as
         line windows of max_chunk_lines overlapping by overlap_lines.
      3) Nothing emitted: line windows of fallback_max_lines over the entire file.
      4) Aliases are renumbered 0..n-1 in emission order.
    """
    data = _as_bytes(src)
    source = parse_scopes(data, lang_id)
    line_starts = compute_line_starts(data)

    chunks: List[CodeChunk] = []
    for rng in sorted(top_level_ranges(source), key=lambda r: r.start_byte):
        if rng.is_empty():
            continue
        if rng.size() > opt.max_chunk_bytes:
            chunks.extend(sliding_window_by_lines(
                path, data, line_starts, rng.start.line, rng.end.line, opt.max_chunk_lines, opt.overlap_lines,
            ))
        else:
            chunks.append(_make_code_chunk(path, data, rng.start.line, rng.end.line, rng.start_byte, rng.end_byte))

    if not chunks:
        last_line = max(len(line_starts) - 2, 0)
        chunks = sliding_window_by_lines(
            path, data, line_starts, 0, last_line, opt.fallback_max_lines, opt.overlap_lines,
        )

    return renumber_aliases(chunks)


def sliding_window_by_lines(
        path: str,
        src: bytes,
        line_starts: Sequence[int],
        start_line: int,
        end_line: int,
        max_lines: int,
        overlap_lines: int,
) -> List[CodeChunk]:
    """
    Cover the inclusive line range with windows of `max_lines`, each starting
    `max(max_lines - overlap_lines, 1)` lines after the previous one. Windows with an empty
    byte range are dropped; `max_lines <= 0` yields nothing.
    """
    if max_lines <= 0:
        return []

    out: List[CodeChunk] = []
    end = max(end_line, start_line)
    step = max(max_lines - overlap_lines, 1)
    cur = start_line
    while cur <= end:
        window_end = min(cur + max_lines - 1, end)
        b0, b1 = byte_range_for_lines(line_starts, cur, window_end)
        if b1 > b0:
            out.append(_make_code_chunk(path, src, cur, window_end, b0, b1))
        if window_end == end:
            break
        cur += step
    return out


def _make_code_chunk(path: str, src: bytes, start_line: int, end_line: int, start_byte: int, end_byte: int) -> CodeChunk:
    return CodeChunk(
        path=path,
        alias=0,
        snippet=_decode(src, start_byte, end_byte),
        start_line=start_line,
        end_line=max(end_line, start_line),
    )


# ---------------- Token-budget indexer ----------------

@dataclass(frozen=True)
class _TokenPlan:
    """Everything the token tiers share for one index_chunks call."""
    path: str
    data: bytes
    mapper: LineMapper
    tokenizer: Tokenizer
    ids: List[int]
    offsets: List[Tuple[int, int]]
    min_tokens: int
    max_tokens: int
    overlap: OverlapStrategy


def index_chunks(
        repo: str,
        path: str,
        src: Source,
        lang_id: str,
        tokenizer: Tokenizer,
        opt: IndexChunkOptions = IndexChunkOptions(),
) -> List[IndexChunk]:
    """
    Build retrieval chunks bounded by a token budget.

    `repo` and `path` only size the "{repo}\\t{path}\\n" prefix that every chunk is prepended
    with downstream; its token count is deducted from `max_chunk_tokens`. Never raises for
    tokenizer, parse or budget problems: those degrade to line windows of `fallback_lines`.
    Offsets stay on the source bytes even when they are not valid UTF-8.
    """
    data = _as_bytes(src)
    text, marks = _lossy_text(data)
    to_source = _SourceOffsets(marks) if marks else None

    try:
        plan = _plan_tokens(repo, path, text, data, tokenizer, opt, to_source)
    except (TokenizerError, IndexChunkBuildError) as exc:
        logger.debug("Token budget unavailable for %s (%s); chunking by lines", path, exc)
        return by_lines_index_chunks(path, data, opt.fallback_lines)

    scopes = _semantic_boundaries(data, lang_id, path)
    tiers: Tuple[Tuple[str, Callable[[], List[IndexChunk]]], ...] = (
        ("scopes", lambda: _scope_tier(plan, scopes)),
        ("whole-file tokens", lambda: _whole_file_tier(plan)),
        ("lines", lambda: by_lines_index_chunks(path, data, opt.fallback_lines)),
    )
    for name, tier in tiers:
        try:
            chunks = tier()
        except IndexChunkBuildError as exc:
            logger.debug("Tier %r failed for %s (%s); chunking by lines", name, path, exc)
            return by_lines_index_chunks(path, data, opt.fallback_lines)
        if chunks:
            logger.debug("Indexed %s into %d chunks via %s", path, len(chunks), name)
            return chunks
    return []


def _plan_tokens(
        repo: str,
        path: str,
        text: str,
        data: bytes,
        tokenizer: Tokenizer,
        opt: IndexChunkOptions,
        to_source: Optional[Callable[[int], int]] = None,
) -> _TokenPlan:
    """Tokenize once and derive the effective budget; raises when either is unusable."""
    encoding = tokenizer.encode(text)
    offsets = list(encoding.offsets)
    if offsets and tuple(offsets[-1]) == (0, 0):
        offsets = offsets[:-1]
    if to_source is not None:
        offsets = [(to_source(s), to_source(e)) for s, e in offsets]
    ids_all = list(encoding.ids)
    # ids only feed the continuation test; out-of-range lookups count as word starts
    ids = ids_all[:min(len(offsets) + 1, len(ids_all))]

    prefix_len = len(tokenizer.encode(f"{repo}\t{path}\n").ids)
    if opt.max_chunk_tokens <= DEDUCT_SPECIAL_TOKENS + prefix_len:
        raise IndexChunkBuildError(
            f"max_chunk_tokens={opt.max_chunk_tokens} leaves no room after "
            f"{DEDUCT_SPECIAL_TOKENS} special and {prefix_len} prefix tokens"
        )

    return _TokenPlan(
        path=path,
        data=data,
        mapper=LineMapper(data),
        tokenizer=tokenizer,
        ids=ids,
        offsets=offsets,
        min_tokens=opt.min_chunk_tokens,
        max_tokens=opt.max_chunk_tokens - DEDUCT_SPECIAL_TOKENS - prefix_len,
        overlap=opt.overlap,
    )


def _semantic_boundaries(data: bytes, lang_id: str, path: str) -> List[TextRange]:
    """Top-level scope ranges, or [] when the file cannot be parsed."""
    try:
        ranges = top_level_ranges(parse_scopes(data, lang_id))
    except ChunkError as exc:
        logger.debug("No semantic boundaries for %s: %s", path, exc)
        return []
    return sorted(ranges, key=lambda r: (r.start_byte, r.end_byte))


def _scope_tier(plan: _TokenPlan, scopes: Iterable[TextRange]) -> List[IndexChunk]:
    out: List[IndexChunk] = []
    for rng in scopes:
        start_byte, end_byte = rng.start_byte, min(rng.end_byte, len(plan.data))
        if end_byte <= start_byte:
            continue
        token_range = token_range_for_byte_range(plan.offsets, start_byte, end_byte)
        if token_range is None:
            continue

        # A scope that fits is kept whole even below min_tokens.
        if token_range[1] - token_range[0] <= plan.max_tokens:
            out.append(make_index_chunk_by_bytes(plan.path, plan.data, start_byte, end_byte, plan.mapper))
            continue

        out.extend(_split(plan, token_range))
    return out


def _whole_file_tier(plan: _TokenPlan) -> List[IndexChunk]:
    return _split(plan, (0, len(plan.offsets)))


def _split(plan: _TokenPlan, token_range: Tuple[int, int]) -> List[IndexChunk]:
    return by_tokens_in_token_range(
        plan.path, plan.data, plan.tokenizer, plan.ids, plan.offsets,
        plan.min_tokens, plan.max_tokens, plan.overlap, token_range, mapper=plan.mapper,
    )


def make_index_chunk_by_bytes(
        path: str, src: bytes, start_byte: int, end_byte: int, mapper: Optional[LineMapper] = None,
) -> IndexChunk:
    if end_byte <= start_byte:
        return IndexChunk(path, start_byte, end_byte, 0, 0, "")
    mapper = mapper or LineMapper(src)
    start_line, _ = mapper.byte_to_point(start_byte)
    end_line, _ = mapper.byte_to_point(end_byte)
    return IndexChunk(path, start_byte, end_byte, start_line, end_line, _decode(src, start_byte, end_byte))


def by_tokens_in_token_range(
        path: str,
        src: bytes,
        tokenizer: Tokenizer,
        ids: Sequence[int],
        offsets: Sequence[Tuple[int, int]],
        min_tokens: int,
        max_tokens: int,
        strategy: OverlapStrategy,
        token_range: Tuple[int, int],
        mapper: Optional[LineMapper] = None,
) -> List[IndexChunk]:
    """
    Split the token range [lo, hi) into chunks of at most `max_tokens` tokens.

    Cut points, best first:
      - the last newline-bearing token past 3/4 of the budget,
      - the last token past 7/8 of the budget whose successor starts a new word,
      - the raw budget limit.
    Chunks shorter than `min_tokens` are dropped except the tail, which always covers the end
    of the range. The next chunk starts near `strategy.next_subdivision(...)` tokens into the
    previous one, snapped to the closest newline, and always strictly after its start.

    Raises:
        IndexChunkBuildError: when max_tokens is not positive, or when the range's token
        offsets run past the end of `src`.
    """
    if not offsets:
        return []
    lo, hi = token_range
    if lo >= hi or hi > len(offsets):
        return []
    if max_tokens <= 0:
        raise IndexChunkBuildError(f"max_tokens must be positive, got {max_tokens}")
    if offsets[hi - 1][1] > len(src):
        raise IndexChunkBuildError(
            f"token {hi - 1} ends at byte {offsets[hi - 1][1]}, past the {len(src)}-byte source"
        )

    mapper = mapper or LineMapper(src)
    max_newline_tokens = max_tokens * 3 // 4
    max_boundary_tokens = max_tokens * 7 // 8
    last = hi - 1

    def has_newline(i: int) -> bool:
        # token i together with the gap up to token i + 1
        return mapper.has_newline(offsets[i][0], offsets[i + 1][0])

    def is_boundary(i: int) -> bool:
        return not is_continuation_token(tokenizer, ids, i + 1)

    chunks: List[IndexChunk] = []
    start = lo
    last_line, last_byte = 0, 0

    while start < last:
        next_limit = min(start + max_tokens, last)
        if next_limit >= last:
            end_limit = last
        else:
            end_limit = _rfind(range(start + max_newline_tokens, next_limit), has_newline)
            if end_limit is None:
                end_limit = _rfind(range(start + max_boundary_tokens, next_limit), is_boundary)
            if end_limit is None:
                end_limit = next_limit

        is_tail = end_limit == last
        if end_limit - start >= min_tokens or is_tail:
            chunk = _token_span_chunk(path, src, offsets, start, end_limit + 1, last_line, last_byte)
            if chunk is not None:
                chunks.append(chunk)
                last_line, last_byte = chunk.start_line, chunk.start_byte
        if is_tail:
            break

        diff = strategy.next_subdivision(end_limit - start)
        mid = max(min(start + diff, end_limit - 1), 0)
        next_nl = _find(range(mid, end_limit), has_newline)
        prev_nl = _rfind(range(start + diff // 2, mid), has_newline)
        if prev_nl is not None:
            prev_nl += 1

        if next_nl is not None and prev_nl is not None:
            new_start = next_nl if next_nl - mid < mid - prev_nl else prev_nl
        elif next_nl is not None:
            new_start = next_nl
        elif prev_nl is not None:
            new_start = prev_nl
        else:
            boundary = _find(range(mid, end_limit), is_boundary)
            new_start = boundary if boundary is not None else mid

        new_start = max(new_start, lo)
        if new_start <= start:
            new_start = start + 1
        start = new_start

    return chunks


def _find(indices: range, pred: Callable[[int], bool]) -> Optional[int]:
    for i in indices:
        if pred(i):
            return i
    return None


def _rfind(indices: range, pred: Callable[[int], bool]) -> Optional[int]:
    for i in reversed(indices):
        if pred(i):
            return i
    return None


def _token_span_chunk(
        path: str,
        src: bytes,
        offsets: Sequence[Tuple[int, int]],
        first: int,
        stop: int,
        last_line: int,
        last_byte: int,
) -> Optional[IndexChunk]:
    """Chunk for tokens [first, stop); the end is where token `stop` begins (or EOF)."""
    start_byte = offsets[first][0]
    end_byte = offsets[stop][0] if stop < len(offsets) else len(src)
    if end_byte <= start_byte:
        return None
    start = point(src, start_byte, last_line, last_byte)
    end = point(src, end_byte, start.line, start.byte)
    return IndexChunk(
        path=path,
        start_byte=start_byte,
        end_byte=end_byte,
        start_line=start.line,
        end_line=end.line,
        text=_decode(src, start_byte, end_byte),
    )


def by_lines_index_chunks(path: str, src: Source, size: int) -> List[IndexChunk]:
    """
    Fixed windows of `size` lines covering every byte of `src`. `size <= 0` yields nothing.
    """
    if size <= 0:
        return []
    data = _as_bytes(src)
    if not data:
        return []

    line_starts = compute_line_starts(data)
    total_lines = len(line_starts) - 1
    out: List[IndexChunk] = []
    for first in range(0, total_lines, size):
        stop = min(first + size, total_lines)
        start_byte, end_byte = line_starts[first], line_starts[stop]
        if start_byte >= end_byte:
            continue
        out.append(IndexChunk(
            path=path,
            start_byte=start_byte,
            end_byte=end_byte,
            start_line=first,
            end_line=stop - 1,
            text=_decode(data, start_byte, end_byte),
        ))
    return out


__all__ = [
    "DEDUCT_SPECIAL_TOKENS",
    "chunk_source",
    "sliding_window_by_lines",
    "index_chunks",
    "by_tokens_in_token_range",
    "by_lines_index_chunks",
    "make_index_chunk_by_bytes",
]
