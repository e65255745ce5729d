"""Simple registry for per-language scope parsers."""
from __future__ import annotations

from typing import Callable, Dict, Optional

from .scope_graph import ScopeSource
from .tree_sitter_scopes import build_scope_graph, normalize_lang_id

ScopeParser = Callable[[bytes, str], ScopeSource]

_REGISTRY: Dict[str, ScopeParser] = {}


def register_scope_parser(lang_id: str, parser: ScopeParser) -> None:
    key = normalize_lang_id(lang_id)
    if not key:
        raise ValueError("Language id must be non-empty")
    if not callable(parser):
        raise TypeError("Scope parser must be callable")
    _REGISTRY[key] = parser


def unregister_scope_parser(lang_id: str) -> None:
    _REGISTRY.pop(normalize_lang_id(lang_id), None)


def get_scope_parser(lang_id: str) -> Optional[ScopeParser]:
    return _REGISTRY.get(normalize_lang_id(lang_id))


def parse_scopes(src: bytes, lang_id: str) -> ScopeSource:
    """
    Build the scope source for `src`: a registered parser if one exists for the language,
    otherwise the tree-sitter provider. Raises ParseError on failure.
    """
    parser = get_scope_parser(lang_id) or build_scope_graph
    return parser(src, lang_id)


__all__ = [
    "ScopeParser",
    "register_scope_parser",
    "unregister_scope_parser",
    "get_scope_parser",
    "parse_scopes",
]
