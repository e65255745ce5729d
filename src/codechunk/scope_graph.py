"""In-memory scope graph and top-level scope extraction.

The graph mirrors what a scope-resolution pass over a syntax tree produces: Scope nodes
carrying a text range, Def and Ref nodes a provider may attach to their scope, and a
"scope is child of scope" edge from every nested scope to its parent. The chunking engine
only reads two things from it: the root scope (a scope with no parent) and the direct
children of that root.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import List, Optional, Protocol, Tuple, Union, runtime_checkable

from .LineMapper import Point


@dataclass(frozen=True)
class TextRange:
    start: Point
    end: Point

    @property
    def start_byte(self) -> int:
        return self.start.byte

    @property
    def end_byte(self) -> int:
        return self.end.byte

    def size(self) -> int:
        return max(self.end.byte - self.start.byte, 0)

    def is_empty(self) -> bool:
        return self.end.byte <= self.start.byte

    def contains(self, start_byte: int, end_byte: int) -> bool:
        return self.start.byte <= start_byte and self.end.byte >= end_byte


class EdgeKind(enum.Enum):
    SCOPE_TO_SCOPE = "scope_to_scope"
    DEF_TO_SCOPE = "def_to_scope"
    REF_TO_SCOPE = "ref_to_scope"


@dataclass(frozen=True)
class Scope:
    range: TextRange
    kind: str = ""


@dataclass(frozen=True)
class Def:
    range: TextRange
    name: str = ""


@dataclass(frozen=True)
class Ref:
    range: TextRange
    name: str = ""


Node = Union[Scope, Def, Ref]
ScopeEntry = Tuple[int, TextRange]


@runtime_checkable
class ScopeSource(Protocol):
    """What the chunkers need from a parsed file."""

    def root_scope(self) -> Optional[int]: ...

    def children_of(self, node: int) -> List[ScopeEntry]: ...


@dataclass
class ScopeGraph:
    nodes: List[Node] = field(default_factory=list)
    edges: List[Tuple[int, int, EdgeKind]] = field(default_factory=list)

    def _add(self, node: Node) -> int:
        self.nodes.append(node)
        return len(self.nodes) - 1

    def add_scope(self, rng: TextRange, parent: Optional[int] = None, kind: str = "") -> int:
        idx = self._add(Scope(rng, kind))
        if parent is not None:
            self.edges.append((idx, parent, EdgeKind.SCOPE_TO_SCOPE))
        return idx

    def add_def(self, rng: TextRange, scope: int, name: str = "") -> int:
        idx = self._add(Def(rng, name))
        self.edges.append((idx, scope, EdgeKind.DEF_TO_SCOPE))
        return idx

    def add_ref(self, rng: TextRange, scope: int, name: str = "") -> int:
        idx = self._add(Ref(rng, name))
        self.edges.append((idx, scope, EdgeKind.REF_TO_SCOPE))
        return idx

    def incoming(self, idx: int, kind: EdgeKind) -> List[int]:
        return [src for src, dst, k in self.edges if dst == idx and k is kind]

    # ScopeSource
    def root_scope(self) -> Optional[int]:
        return find_root_scope_idx(self)

    def children_of(self, node: int) -> List[ScopeEntry]:
        return top_level_scopes(self, node)


def find_root_scope_idx(graph: ScopeGraph) -> Optional[int]:
    """
    Return the Scope node without a parent scope.

    A disconnected graph can have several; the one with the largest range wins, then the
    one starting first, then the lowest node index.
    """
    parented = {src for src, _, kind in graph.edges if kind is EdgeKind.SCOPE_TO_SCOPE}
    best: Optional[Tuple[int, int, int]] = None  # (-size, start_byte, idx)
    for idx, node in enumerate(graph.nodes):
        if not isinstance(node, Scope) or idx in parented:
            continue
        key = (-node.range.size(), node.range.start_byte, idx)
        if best is None or key < best:
            best = key
    return best[2] if best is not None else None


def top_level_scopes(graph: ScopeGraph, root_idx: int) -> List[ScopeEntry]:
    """Scopes directly nested under `root_idx`, in edge insertion order. No recursion."""
    out: List[ScopeEntry] = []
    for child in graph.incoming(root_idx, EdgeKind.SCOPE_TO_SCOPE):
        node = graph.nodes[child]
        if isinstance(node, Scope):
            out.append((child, node.range))
    return out


def top_level_ranges(source: ScopeSource) -> List[TextRange]:
    """Ranges of the root scope's direct children, or [] when there is no root."""
    root = source.root_scope()
    if root is None:
        return []
    return [rng for _, rng in source.children_of(root)]


__all__ = [
    "TextRange",
    "EdgeKind",
    "Scope",
    "Def",
    "Ref",
    "ScopeSource",
    "ScopeGraph",
    "find_root_scope_idx",
    "top_level_scopes",
    "top_level_ranges",
]
