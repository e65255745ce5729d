"""
Indexer.py: calling layer around the chunking engine

- index_file: read bytes -> skip binaries -> detect language -> index_chunks
- index_repository: index_file per path over a thread pool (calls share nothing but the
  read-only tokenizer)
- refill_hits: group hits by file -> refill_chunks once per file -> dedup_context_chunks
- Per-file failures are logged and skipped; the engine itself never touches the filesystem
"""
from __future__ import annotations

import logging
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .Chunk import ContextChunk, IndexChunk, IndexChunkOptions, RefillOptions, dedup_context_chunks
from .chunker import index_chunks
from .errors import ChunkError
from .refill import refill_chunks
from .text_detection import BinaryDetector
from .tokenization import Tokenizer
from .tree_sitter_scopes import detect_lang_id

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolTrace:
    tool: str
    summary: str


def index_file(
        repo: str,
        repo_root: str | Path,
        path: str,
        tokenizer: Tokenizer,
        opt: IndexChunkOptions = IndexChunkOptions(),
        detector: Optional[BinaryDetector] = None,
) -> List[IndexChunk]:
    """Index one repository-relative file. Binary files yield []; OSError propagates."""
    detector = detector or BinaryDetector(base_dir=repo_root)
    if detector.is_binary(path):
        logger.debug("Skipping binary file %s", path)
        return []

    src = (Path(repo_root) / path).read_bytes()
    lang_id = detect_lang_id(path) or ""
    chunks = index_chunks(repo, path, src, lang_id, tokenizer, opt)
    logger.debug("File %s (%s) produced %d chunks", path, lang_id or "unknown", len(chunks))
    return chunks


def index_repository(
        repo: str,
        repo_root: str | Path,
        paths: Iterable[str],
        tokenizer: Tokenizer,
        opt: IndexChunkOptions = IndexChunkOptions(),
        max_workers: Optional[int] = None,
) -> Dict[str, List[IndexChunk]]:
    """
    Index many files concurrently.

    Returns:
        {path: chunks} in the order paths were given (duplicates collapsed). Files that
        cannot be read are logged and left out.
    """
    ordered = list(dict.fromkeys(paths))
    detector = BinaryDetector(base_dir=repo_root)
    results: Dict[str, List[IndexChunk]] = {}

    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        futures = {
            p: pool.submit(index_file, repo, repo_root, p, tokenizer, opt, detector)
            for p in ordered
        }
        for p in ordered:
            try:
                results[p] = futures[p].result()
            except OSError as e:
                logger.error("Failed indexing %s: %s", p, e)

    total = sum(len(c) for c in results.values())
    logger.info("Indexed %d/%d files of %s into %d chunks", len(results), len(ordered), repo, total)
    return results


def refill_hits(
        repo_root: str | Path,
        hits: Sequence[IndexChunk],
        opt: RefillOptions = RefillOptions(),
) -> Tuple[List[ContextChunk], List[ToolTrace]]:
    """
    Expand search hits into deduplicated ContextChunks.

    Each file is read and parsed once for all of its hits. Files that cannot be read or
    parsed are logged and skipped, and listed in the trace.
    """
    by_file: Dict[str, List[IndexChunk]] = defaultdict(list)
    for h in hits:
        by_file[h.path].append(h)

    context: List[ContextChunk] = []
    skipped: List[str] = []
    for path in sorted(by_file):
        try:
            src = (Path(repo_root) / path).read_bytes()
            context.extend(refill_chunks(path, src, detect_lang_id(path) or "", by_file[path], opt))
        except (OSError, ChunkError) as e:
            logger.warning("Skipping refill for %s: %s", path, e)
            skipped.append(path)

    merged = dedup_context_chunks(context)
    trace = [ToolTrace(
        tool="refill_hits",
        summary=f"refilled {len(hits)} hits into {len(merged)} context chunks",
    )]
    if skipped:
        trace.append(ToolTrace(tool="refill_hits", summary=f"skipped {len(skipped)} files: {', '.join(skipped)}"))
    return merged, trace


__all__ = ["ToolTrace", "index_file", "index_repository", "refill_hits"]
