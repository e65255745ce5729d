import bisect
from typing import Callable, List, NamedTuple, Optional, Sequence, Tuple, TypeVar, Union

T = TypeVar("T")


class Point(NamedTuple):
    byte: int
    line: int
    column: int


class LineMapper:
    """
    Efficiently maps byte offsets to (row, col) tuples using precomputed newline positions.
    Optimized for O(log N) lookups after an O(N) initialization.
    """
    def __init__(self, contents: bytes):
        self.contents_len = len(contents)
        # Efficiently find all newline indices using the C-optimized find method
        self.newlines = []
        pos = contents.find(b"\n")
        while pos != -1:
            self.newlines.append(pos)
            pos = contents.find(b"\n", pos + 1)

    def has_newline(self, lo: int, hi: int) -> bool:
        """True if any newline byte lies in [lo, hi)."""
        if hi <= lo:
            return False
        return bisect.bisect_left(self.newlines, lo) < bisect.bisect_left(self.newlines, hi)

    def byte_to_point(self, offset: int) -> tuple[int, int]:
        """
        Convert a byte offset to a (row, column) tuple.
        Rows and Columns are 0-indexed.
        """
        if offset < 0 or offset > self.contents_len:
            raise ValueError(f"Offset {offset} out of bounds (0-{self.contents_len})")

        # Number of newlines strictly before the offset is the row.
        idx = bisect.bisect_left(self.newlines, offset)
        if idx == 0:
            return (0, offset)

        # The newline itself belongs to the previous row.
        return (idx, offset - self.newlines[idx - 1] - 1)


# ---------------- Free helpers over raw bytes ----------------

def compute_line_starts(src: bytes) -> List[int]:
    """
    Byte offset of every line start, plus a trailing `len(src)` sentinel so that line i
    always spans [starts[i], starts[i + 1]).
    """
    starts = [0]
    pos = src.find(b"\n")
    while pos != -1:
        starts.append(pos + 1)
        pos = src.find(b"\n", pos + 1)
    starts.append(len(src))
    return starts


def byte_range_for_lines(line_starts: Sequence[int], start_line: int, end_line: int) -> Tuple[int, int]:
    """Byte range [start, end) covering the inclusive 0-based line range."""
    start = line_starts[start_line] if 0 <= start_line < len(line_starts) else 0
    end_exclusive = end_line + 1
    end = line_starts[end_exclusive] if 0 <= end_exclusive < len(line_starts) else line_starts[-1]
    return start, end


def point(src: Union[bytes, str], byte: int, last_line: int = 0, last_byte: int = 0) -> Point:
    """
    Locate `byte`, counting newlines only from a (last_line, last_byte) cursor known to lie
    at or before it. A cursor past `byte` is discarded and counting restarts at the file start.
    """
    data = src.encode("utf-8", errors="replace") if isinstance(src, str) else src
    if last_byte > byte:
        last_line, last_byte = 0, 0
    line = last_line + data.count(b"\n", last_byte, byte)
    last_nl = data.rfind(b"\n", 0, byte)
    column = byte if last_nl == -1 else byte - (last_nl + 1)
    return Point(byte=byte, line=line, column=column)


def lower_bound_by(items: Sequence[T], pred: Callable[[T], bool]) -> int:
    """First index whose item satisfies `pred`; `pred` must be monotone (False...True)."""
    left, right = 0, len(items)
    while left < right:
        mid = left + (right - left) // 2
        if pred(items[mid]):
            right = mid
        else:
            left = mid + 1
    return left


def token_range_for_byte_range(
        offsets: Sequence[Tuple[int, int]], start_byte: int, end_byte: int
) -> Optional[Tuple[int, int]]:
    """
    Map a byte range onto token indices [start, end): from the first token ending after
    `start_byte` up to (excluding) the first token starting at or after `end_byte`.
    Returns None for empty byte ranges or when no token falls inside.
    """
    if end_byte <= start_byte or not offsets:
        return None
    start = lower_bound_by(offsets, lambda o: o[1] > start_byte)
    end = lower_bound_by(offsets, lambda o: o[0] >= end_byte)
    if start >= end:
        return None
    return start, end


__all__ = [
    "Point",
    "LineMapper",
    "compute_line_starts",
    "byte_range_for_lines",
    "point",
    "lower_bound_by",
    "token_range_for_byte_range",
]
