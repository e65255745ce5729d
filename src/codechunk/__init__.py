"""Code chunking and indexing engine.

- IndexChunk: retrieval unit, sized by a token budget
- ContextChunk: LLM context unit, a whole top-level scope where possible
- Search IndexChunks -> refill_chunks -> dedup_context_chunks -> prompt
"""
from .Chunk import (
    ByLines,
    ChunkOptions,
    CodeChunk,
    ContextChunk,
    IndexChunk,
    IndexChunkOptions,
    OverlapStrategy,
    Partial,
    RefillOptions,
    dedup_context_chunks,
    dedup_index_hits,
)
from .chunker import by_lines_index_chunks, by_tokens_in_token_range, chunk_source, index_chunks
from .errors import ChunkError, IndexChunkBuildError, ParseError
from .refill import refill_chunks
from .scope_graph import ScopeGraph, ScopeSource, TextRange, find_root_scope_idx, top_level_scopes
from .tokenization import HFTokenizer, TokenEncoding, Tokenizer, TokenizerError
from .tree_sitter_scopes import build_scope_graph, detect_lang_id

__all__ = [
    "ByLines",
    "ChunkOptions",
    "CodeChunk",
    "ContextChunk",
    "IndexChunk",
    "IndexChunkOptions",
    "OverlapStrategy",
    "Partial",
    "RefillOptions",
    "dedup_context_chunks",
    "dedup_index_hits",
    "by_lines_index_chunks",
    "by_tokens_in_token_range",
    "chunk_source",
    "index_chunks",
    "refill_chunks",
    "ChunkError",
    "IndexChunkBuildError",
    "ParseError",
    "ScopeGraph",
    "ScopeSource",
    "TextRange",
    "find_root_scope_idx",
    "top_level_scopes",
    "HFTokenizer",
    "TokenEncoding",
    "Tokenizer",
    "TokenizerError",
    "build_scope_graph",
    "detect_lang_id",
]
