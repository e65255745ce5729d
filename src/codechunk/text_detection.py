from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Optional

logger = logging.getLogger(__name__)

PRINTABLE_BYTES = set(b"\t\n\r\f\b" + bytes(range(32, 127)))
SAMPLE_BYTES = 8192
NON_PRINTABLE_RATIO = 0.30


def looks_binary(sample: bytes) -> bool:
    """NUL byte, or more than 30% bytes outside printable ASCII/whitespace."""
    if not sample:
        return False
    if b"\x00" in sample:
        return True
    # UTF-8 multi-byte sequences are text, not noise.
    try:
        sample.decode("utf-8")
        return False
    except UnicodeDecodeError as exc:
        # a multi-byte character cut at the sample edge still counts as text
        if exc.start >= len(sample) - 3 and exc.reason == "unexpected end of data":
            return False
    non_printable = sum(1 for b in sample if b not in PRINTABLE_BYTES)
    return non_printable / len(sample) > NON_PRINTABLE_RATIO


class BinaryDetector:
    """Classify repository files as binary/text before they reach the chunkers."""

    def __init__(self, git_runner: Optional[Callable[[list[str]], str]] = None, base_dir: Path | str | None = None) -> None:
        self._git_runner = git_runner
        self._base_dir = Path(base_dir) if base_dir is not None else Path.cwd()

    def is_binary(self, path: str) -> bool:
        attr = self._git_attr_binary(path)
        if attr is not None:
            return attr

        sample = self._read_sample(path)
        if sample is None:
            return False
        return looks_binary(sample)

    def _git_attr_binary(self, path: str) -> Optional[bool]:
        if self._git_runner is None:
            return None
        try:
            out = self._git_runner(["check-attr", "binary", "--", path]).strip()
        except (OSError, RuntimeError) as exc:
            logger.debug("git check-attr failed for %s: %s", path, exc)
            return None
        if not out:
            return None
        # Format: "path: binary: value"
        value = out.rsplit(":", 1)[-1].strip().lower()
        if value == "set":
            return True
        if value in {"unset", "unspecified", "false"}:
            return False
        return None

    def _read_sample(self, path: str) -> Optional[bytes]:
        p = Path(path)
        if not p.is_absolute():
            p = self._base_dir / p
        try:
            with p.open("rb") as fh:
                return fh.read(SAMPLE_BYTES)
        except OSError:
            return None
