# Shared test fixtures utilities.
# Provides deterministic byte generators, on-disk fixture management, and in-memory
# doubles for the scope-parser and tokenizer protocols so engine tests run without
# real grammars or vocabularies.

from __future__ import annotations

import random
import re
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from codechunk.LineMapper import LineMapper, Point
from codechunk.errors import ParseError
from codechunk.scope_graph import ScopeGraph, TextRange
from codechunk.tokenization import TokenEncoding, TokenizerError, char_to_byte_offsets

# Directory for on-disk byte fixtures used by tests
FIXTURES_DIR = Path(__file__).with_name("fixtures")
FIXTURES_DIR.mkdir(exist_ok=True)

FAKE_LANG = "fakelang"

RUST_SAMPLE = b"""fn add(a: i32, b: i32) -> i32 {
    a + b
}

fn main() {
    let result = add(1, 2);
    println!("{}", result);
}
"""


def rand_bytes(n: int, rate: float = 0.05, crlf: bool = False, seed: int = 42) -> bytes:
    """Generate deterministic ASCII-ish bytes with occasional newlines.

    - n: total length in bytes
    - rate: probability of inserting a newline at each step
    - crlf: if True, inserts CRLF; otherwise LF
    - seed: RNG seed for determinism
    """
    rnd = random.Random(seed)
    out = bytearray()
    for _ in range(n):
        if rnd.random() < rate:
            out += (b"\r\n" if crlf else b"\n")
        else:
            out.append(rnd.choice(b"abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ 0123456789"))
    return bytes(out)


def ensure_fixtures() -> None:
    """Create deterministic byte-file fixtures under tests/fixtures (idempotent)."""
    files = {
        "no_newlines_small.txt": lambda: b"A" * 128,
        "no_newlines_large.txt": lambda: b"B" * 150_000,
        "crlf.txt": lambda: rand_bytes(16_384, rate=0.08, crlf=True, seed=7),
        "tiny.txt": lambda: b"XY",
        "huge_random.txt": lambda: rand_bytes(300_000, rate=0.02, crlf=False, seed=99),
        "mem.rs": lambda: RUST_SAMPLE,
    }
    for name, make in files.items():
        target = FIXTURES_DIR / name
        if not target.exists():
            target.write_bytes(make())


def load_bytes(name: str) -> bytes:
    """Load a named fixture file from tests/fixtures directory."""
    return (FIXTURES_DIR / name).read_bytes()


# ---------------- Scope-parser double ----------------

def text_range(src: bytes, start: int, end: int) -> TextRange:
    mapper = LineMapper(src)
    (sr, sc), (er, ec) = mapper.byte_to_point(start), mapper.byte_to_point(end)
    return TextRange(Point(start, sr, sc), Point(end, er, ec))


def graph_from_spans(src: bytes, spans: Sequence[Tuple[int, int]], nested: Sequence[Tuple[int, int, int]] = ()) -> ScopeGraph:
    """
    Root scope over the whole file, one child scope per (start, end) span, and for each
    (parent_position, start, end) in `nested` a grandchild under spans[parent_position].
    """
    graph = ScopeGraph()
    root = graph.add_scope(text_range(src, 0, len(src)), kind="root")
    children = [graph.add_scope(text_range(src, s, e), parent=root, kind="item") for s, e in spans]
    for parent_pos, s, e in nested:
        graph.add_scope(text_range(src, s, e), parent=children[parent_pos], kind="block")
    return graph


def spans_of(src: bytes, *needles: bytes) -> List[Tuple[int, int]]:
    """Byte spans of each needle's first occurrence."""
    out = []
    for needle in needles:
        start = src.index(needle)
        out.append((start, start + len(needle)))
    return out


class FakeScopeParser:
    """Scope parser returning a fixed span layout; optionally fails like a broken grammar."""

    def __init__(self, spans: Sequence[Tuple[int, int]] = (), fail: bool = False,
                 nested: Sequence[Tuple[int, int, int]] = ()) -> None:
        self.spans = list(spans)
        self.nested = list(nested)
        self.fail = fail
        self.calls: List[str] = []

    def __call__(self, src: bytes, lang_id: str) -> ScopeGraph:
        self.calls.append(lang_id)
        if self.fail:
            raise ParseError(lang_id, "fake parse failure")
        return graph_from_spans(src, self.spans, self.nested)


class NeedleScopeParser:
    """Scope parser that finds each needle in whatever bytes it is handed."""

    def __init__(self, *needles: bytes) -> None:
        self.needles = needles
        self.seen: List[bytes] = []

    def __call__(self, src: bytes, lang_id: str) -> ScopeGraph:
        self.seen.append(src)
        return graph_from_spans(src, spans_of(src, *self.needles))


# ---------------- Tokenizer doubles ----------------

_WORDS = re.compile(r"\w+|[^\w\s]+")


class FakeTokenizer:
    """Word/punctuation tokenizer with a growing vocabulary (mirrors a Whitespace pre-tokenizer)."""

    def __init__(self, fail: bool = False, trailing_sentinel: bool = False) -> None:
        self.fail = fail
        self.trailing_sentinel = trailing_sentinel
        self._vocab: Dict[str, int] = {}
        self._tokens: List[str] = []

    def _id(self, token: str) -> int:
        if token not in self._vocab:
            self._vocab[token] = len(self._tokens)
            self._tokens.append(token)
        return self._vocab[token]

    def encode(self, text: str) -> TokenEncoding:
        if self.fail:
            raise TokenizerError("fake encode failure")
        matches = list(_WORDS.finditer(text))
        ids = [self._id(m.group()) for m in matches]
        offsets = char_to_byte_offsets(text, [(m.start(), m.end()) for m in matches])
        if self.trailing_sentinel:
            ids.append(self._id("[SEP]"))
            offsets.append((0, 0))
        return TokenEncoding(ids=ids, offsets=offsets)

    def id_to_token(self, token_id: int) -> Optional[str]:
        if 0 <= token_id < len(self._tokens):
            return self._tokens[token_id]
        return None


class MisalignedTokenizer(FakeTokenizer):
    """FakeTokenizer whose offsets are shifted past the end of any small source."""

    def __init__(self, shift: int = 1000) -> None:
        super().__init__()
        self.shift = shift

    def encode(self, text: str) -> TokenEncoding:
        enc = super().encode(text)
        return TokenEncoding(ids=enc.ids, offsets=[(s + self.shift, e + self.shift) for s, e in enc.offsets])


class TableTokenizer:
    """id_to_token over a fixed table; used with hand-built token streams."""

    def __init__(self, table: Sequence[str]) -> None:
        self.table = list(table)

    def encode(self, text: str) -> TokenEncoding:  # pragma: no cover - streams are prebuilt
        raise TokenizerError("TableTokenizer only answers id_to_token")

    def id_to_token(self, token_id: int) -> Optional[str]:
        if 0 <= token_id < len(self.table):
            return self.table[token_id]
        return None


def synthetic_stream(
        n_tokens: int,
        rnd: random.Random,
        newline_rate: float = 0.1,
        continuation_rate: float = 0.3,
) -> Tuple[bytes, List[int], List[Tuple[int, int]], TableTokenizer]:
    """
    Build (src, ids, offsets, tokenizer) for `n_tokens` tokens. Token i prints as "##t"
    (continuation) or "t"; gaps between tokens are a space or a newline.
    """
    table = ["w", "##w"]
    out = bytearray()
    ids: List[int] = []
    offsets: List[Tuple[int, int]] = []
    for _ in range(n_tokens):
        cont = rnd.random() < continuation_rate
        word = b"x" * rnd.randint(1, 4)
        start = len(out)
        out += word
        offsets.append((start, len(out)))
        ids.append(1 if cont else 0)
        out += b"\n" if rnd.random() < newline_rate else b" "
    return bytes(out), ids, offsets, TableTokenizer(table)


__all__ = [
    "FIXTURES_DIR",
    "FAKE_LANG",
    "RUST_SAMPLE",
    "rand_bytes",
    "ensure_fixtures",
    "load_bytes",
    "text_range",
    "graph_from_spans",
    "spans_of",
    "FakeScopeParser",
    "NeedleScopeParser",
    "FakeTokenizer",
    "MisalignedTokenizer",
    "TableTokenizer",
    "synthetic_stream",
]
