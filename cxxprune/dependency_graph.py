"""
cxxprune/dependency_graph.py
════════════════════════════

The *requires* graph over semantic declarations and its reachability
closure.

    ┌─────────────────────────────────────────────────────────────────┐
    │  Edge  A → B   means   "keeping A requires keeping B"           │
    │                                                                 │
    │  • nodes are DeclKey values (semantic declarations)             │
    │  • cycles are normal (mutual recursion, class ↔ member)         │
    │  • the graph is frozen once collection finishes                 │
    └─────────────────────────────────────────────────────────────────┘

Reachability:

    A declaration is *used* iff it is reachable from some root through
    zero or more edges.  The closure is computed with a worklist and a
    membership set, so every node is expanded at most once: O(V + E),
    and the result does not depend on traversal order.

Usage example::

    graph = RequiresGraph()
    graph.add_edge(main_key, helper_key)
    graph.add_root(main_key)
    graph.freeze()
    used = compute_used(graph)

    # Export to Graphviz DOT (debugging aid)
    dot_str = graph.to_dot()
"""

from __future__ import annotations

import logging
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import (
    Deque,
    Dict,
    FrozenSet,
    Iterable,
    Iterator,
    Optional,
    Set,
)

from .errors import GraphFrozenError

_log = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  PART 1 — SEMANTIC IDENTITY
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True, order=True)
class DeclKey:
    """
    Stable identity of a semantic declaration.

    Attributes
    ----------
    file : str
        File holding the canonical declaration's name.
    offset : int
        Byte offset of the canonical declaration's name in *file*.
    name : str
        Qualified name (``ns::Cls::member``); the USR for instantiations.
    kind : str
        Cursor kind name of the canonical declaration, or ``INSTANTIATION``.
    """
    file: str
    offset: int
    name: str
    kind: str

    def __str__(self) -> str:
        return f"{self.kind} {self.name} @{self.file}:{self.offset}"


INSTANTIATION = "INSTANTIATION"


# ═══════════════════════════════════════════════════════════════════════════
#  PART 2 — THE REQUIRES GRAPH
# ═══════════════════════════════════════════════════════════════════════════

class RequiresGraph:
    """Directed graph of semantic declarations plus the root set."""

    def __init__(self) -> None:
        self._succ: Dict[DeclKey, Set[DeclKey]] = defaultdict(set)
        self._nodes: Set[DeclKey] = set()
        self._roots: Set[DeclKey] = set()
        self._frozen = False

    # ── Construction ──────────────────────────────────────────────────

    def _check_mutable(self) -> None:
        if self._frozen:
            raise GraphFrozenError("requires graph is read-only after collection")

    def add_node(self, key: DeclKey) -> None:
        self._check_mutable()
        self._nodes.add(key)

    def add_edge(self, source: DeclKey, target: DeclKey) -> None:
        self._check_mutable()
        if source == target:
            self._nodes.add(source)
            return
        self._nodes.add(source)
        self._nodes.add(target)
        self._succ[source].add(target)

    def add_root(self, key: DeclKey) -> None:
        self._check_mutable()
        self._nodes.add(key)
        self._roots.add(key)

    def freeze(self) -> None:
        self._frozen = True
        _log.debug("requires graph frozen: %d nodes, %d edges, %d roots",
                   len(self._nodes), self.edge_count(), len(self._roots))

    # ── Queries ───────────────────────────────────────────────────────

    @property
    def frozen(self) -> bool:
        return self._frozen

    @property
    def roots(self) -> FrozenSet[DeclKey]:
        return frozenset(self._roots)

    def nodes(self) -> Iterator[DeclKey]:
        return iter(self._nodes)

    def successors(self, key: DeclKey) -> FrozenSet[DeclKey]:
        succ = self._succ.get(key)
        return frozenset(succ) if succ else frozenset()

    def edge_count(self) -> int:
        return sum(len(s) for s in self._succ.values())

    def __contains__(self, key: object) -> bool:
        return key in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    # ── Export ────────────────────────────────────────────────────────

    def to_dot(self, name: str = "requires") -> str:
        """Render the graph in Graphviz DOT format; roots are boxed."""
        ids: Dict[DeclKey, str] = {}
        lines = [f"digraph {name} {{"]
        for i, key in enumerate(sorted(self._nodes)):
            ids[key] = f"n{i}"
            label = f"{key.kind}\\n{key.name}".replace('"', '\\"')
            shape = "box" if key in self._roots else "ellipse"
            lines.append(f'  n{i} [label="{label}", shape={shape}];')
        for src in sorted(self._succ):
            for dst in sorted(self._succ[src]):
                lines.append(f"  {ids[src]} -> {ids[dst]};")
        lines.append("}")
        return "\n".join(lines)


# ═══════════════════════════════════════════════════════════════════════════
#  PART 3 — REACHABILITY ENGINE
# ═══════════════════════════════════════════════════════════════════════════

def compute_used(
    graph: RequiresGraph,
    roots: Optional[Iterable[DeclKey]] = None,
) -> FrozenSet[DeclKey]:
    """
    Return the set of declarations reachable from *roots*.

    Parameters
    ----------
    graph : RequiresGraph
        The requires graph.  It is only read.
    roots : Iterable[DeclKey], optional
        Start nodes; defaults to ``graph.roots``.

    Returns
    -------
    FrozenSet[DeclKey]
        Every root plus everything reachable from one.
    """
    start = graph.roots if roots is None else frozenset(roots)
    used: Set[DeclKey] = set()
    worklist: Deque[DeclKey] = deque(start)

    while worklist:
        key = worklist.popleft()
        if key in used:
            continue
        used.add(key)
        for succ in graph.successors(key):
            if succ not in used:
                worklist.append(succ)

    _log.debug("reachability: %d of %d declarations used", len(used), len(graph))
    return frozenset(used)
