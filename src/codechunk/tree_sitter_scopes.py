# Tree-sitter backed scope-graph provider.
# - Parse RAW BYTES; every range is expressed in bytes plus tree-sitter's (row, column).
# - A configured scope node type opens a Scope whose parent is the innermost enclosing one.
# - The file itself is always the root scope, spanning [0, len(src)).

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path, PurePath
from typing import List, Optional, Tuple

from tree_sitter import Node
from tree_sitter_language_pack import get_parser

from .errors import ParseError
from .LineMapper import LineMapper, Point
from .scope_graph import ScopeGraph, TextRange

logger = logging.getLogger(__name__)

MAX_PARSE_BYTES = 4 * 1024 * 1024


@dataclass(frozen=True)
class ScopeGrammar:
    name: str
    extensions: Tuple[str, ...]
    scopes: frozenset


def _load_scope_grammars() -> tuple[dict[str, ScopeGrammar], dict[str, str], dict[str, str]]:
    """Load per-language scope node types, aliases and extensions from JSON configuration."""
    cfg_path = Path(__file__).with_name("scope_grammar.json")
    with cfg_path.open("r", encoding="utf-8") as handle:
        data = json.load(handle)

    grammars: dict[str, ScopeGrammar] = {}
    aliases: dict[str, str] = {}
    extensions: dict[str, str] = {}
    for name, raw in data.get("languages", {}).items():
        grammar = ScopeGrammar(
            name=name,
            extensions=tuple(str(e).lower() for e in raw.get("extensions", [])),
            scopes=frozenset(raw.get("scopes", [])),
        )
        grammars[name] = grammar
        aliases[name] = name
        for alias in raw.get("aliases", []):
            aliases[str(alias).lower()] = name
        for ext in grammar.extensions:
            extensions.setdefault(ext, name)
    return grammars, aliases, extensions


SCOPE_GRAMMARS, LANGUAGE_ALIASES, EXTENSION_LANGUAGES = _load_scope_grammars()


def normalize_lang_id(lang_id: str) -> str:
    key = (lang_id or "").strip().lower()
    return LANGUAGE_ALIASES.get(key, key)


def detect_lang_id(path: str | PurePath) -> Optional[str]:
    """Infer the language id from a file extension, or None if it is not configured."""
    ext = PurePath(path).suffix[1:].lower()
    if not ext:
        return None
    return EXTENSION_LANGUAGES.get(ext)


def build_scope_graph(src: bytes, lang_id: str) -> ScopeGraph:
    """
    Parse `src` and build its scope graph.

    Raises:
        ParseError: unsupported language, oversized input, or a parser failure.
    """
    grammar = SCOPE_GRAMMARS.get(normalize_lang_id(lang_id))
    if grammar is None:
        raise ParseError(lang_id, "unsupported language")
    if len(src) > MAX_PARSE_BYTES:
        raise ParseError(lang_id, f"file too large ({len(src)} bytes > {MAX_PARSE_BYTES})")

    try:
        parser = get_parser(grammar.name)
        tree = parser.parse(src)
    except Exception as exc:
        raise ParseError(lang_id, f"tree-sitter failed: {exc}") from exc

    return _walk(tree.root_node, src, grammar)


def _walk(root: Node, src: bytes, grammar: ScopeGrammar) -> ScopeGraph:
    graph = ScopeGraph()
    end_row, end_col = LineMapper(src).byte_to_point(len(src))
    root_idx = graph.add_scope(
        TextRange(Point(0, 0, 0), Point(len(src), end_row, end_col)), kind=root.type
    )

    stack: List[Tuple[Node, int]] = [(child, root_idx) for child in reversed(root.named_children)]
    while stack:
        node, scope = stack.pop()
        inner = scope
        if node.type in grammar.scopes:
            inner = graph.add_scope(_node_range(node), parent=scope, kind=node.type)
        stack.extend((child, inner) for child in reversed(node.named_children))

    logger.debug(
        "Built scope graph for %s: %d nodes, %d edges", grammar.name, len(graph.nodes), len(graph.edges)
    )
    return graph


def _node_range(node: Node) -> TextRange:
    return TextRange(
        Point(node.start_byte, node.start_point[0], node.start_point[1]),
        Point(node.end_byte, node.end_point[0], node.end_point[1]),
    )


__all__ = [
    "MAX_PARSE_BYTES",
    "ScopeGrammar",
    "SCOPE_GRAMMARS",
    "normalize_lang_id",
    "detect_lang_id",
    "build_scope_graph",
]
