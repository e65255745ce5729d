"""Tokenizer boundary used by the token-budget indexer.

The indexer works in UTF-8 byte offsets. HuggingFace `tokenizers` reports character
offsets from Python, so the adapter converts them before handing them over.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional, Protocol, Sequence, Tuple, runtime_checkable

import numpy as np
from tokenizers import Tokenizer as _HFTokenizer

logger = logging.getLogger(__name__)

CONTINUATION_PREFIX = "##"


class TokenizerError(RuntimeError):
    """encode() failed; callers degrade to line-based chunking."""


@dataclass(frozen=True)
class TokenEncoding:
    ids: List[int]
    offsets: List[Tuple[int, int]]  # byte offsets into the UTF-8 encoded text


@runtime_checkable
class Tokenizer(Protocol):
    def encode(self, text: str) -> TokenEncoding: ...

    def id_to_token(self, token_id: int) -> Optional[str]: ...


def is_continuation_token(tokenizer: Tokenizer, ids: Sequence[int], index: int) -> bool:
    """
    True when the token at `index` continues the previous word ("##" wordpiece prefix).
    Indices past the id table, or ids the vocabulary cannot print, count as word starts.
    """
    if index < 0 or index >= len(ids):
        return False
    token = tokenizer.id_to_token(ids[index])
    return token is not None and token.startswith(CONTINUATION_PREFIX)


def char_to_byte_offsets(text: str, offsets: Sequence[Tuple[int, int]]) -> List[Tuple[int, int]]:
    """Translate character offsets into UTF-8 byte offsets of `text`."""
    if not offsets:
        return []
    if text.isascii():
        return [(int(s), int(e)) for s, e in offsets]

    code_points = np.frombuffer(text.encode("utf-32-le", errors="surrogatepass"), dtype="<u4")
    widths = 1 + (code_points >= 0x80).astype(np.int64) + (code_points >= 0x800) + (code_points >= 0x10000)
    table = np.zeros(len(code_points) + 1, dtype=np.int64)
    np.cumsum(widths, out=table[1:])

    pairs = np.clip(np.asarray(offsets, dtype=np.int64).reshape(-1, 2), 0, len(code_points))
    return [(int(s), int(e)) for s, e in table[pairs].tolist()]


class HFTokenizer:
    """Tokenizer backed by a HuggingFace `tokenizers.Tokenizer`."""

    def __init__(self, tokenizer: _HFTokenizer, add_special_tokens: bool = True) -> None:
        self._tokenizer = tokenizer
        self._add_special_tokens = add_special_tokens

    @classmethod
    def from_file(cls, path: str | Path, **kwargs: Any) -> "HFTokenizer":
        return cls(_HFTokenizer.from_file(str(path)), **kwargs)

    @classmethod
    def from_pretrained(cls, model_name: str, **kwargs: Any) -> "HFTokenizer":
        """Load the fast tokenizer of a hub model through transformers."""
        try:
            from transformers import AutoTokenizer

            auto = AutoTokenizer.from_pretrained(model_name, use_fast=True)
        except Exception as exc:  # pragma: no cover - network/environment dependent
            raise TokenizerError(f"Failed to load tokenizer for {model_name}") from exc
        backend = getattr(auto, "backend_tokenizer", None)
        if backend is None:
            raise TokenizerError(f"{model_name} has no fast (tokenizers) backend")
        logger.info("Loaded tokenizer from %s", model_name)
        return cls(backend, **kwargs)

    def encode(self, text: str) -> TokenEncoding:
        try:
            enc = self._tokenizer.encode(text, add_special_tokens=self._add_special_tokens)
        except Exception as exc:
            raise TokenizerError(f"encode failed: {exc}") from exc
        return TokenEncoding(ids=list(enc.ids), offsets=char_to_byte_offsets(text, enc.offsets))

    def id_to_token(self, token_id: int) -> Optional[str]:
        return self._tokenizer.id_to_token(token_id)


__all__ = [
    "CONTINUATION_PREFIX",
    "TokenizerError",
    "TokenEncoding",
    "Tokenizer",
    "HFTokenizer",
    "is_continuation_token",
    "char_to_byte_offsets",
]
