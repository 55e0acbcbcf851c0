"""
cxxprune.decl_index
===================

Declaration Index: every non-implicit declaration occurrence of the analysed
file, keyed by its textual position, together with the mapping from an
occurrence to the semantic declaration it belongs to.

Semantic vs lexical declarations
--------------------------------
A *semantic* declaration is what a programmer means by "the function f" or
"the class A".  A *lexical* declaration is one place in the source that
declares it: forward declarations, the definition, an out-of-line member
definition.  The semantic declaration is represented by its canonical
occurrence (libclang ``Cursor.canonical``, the first declaration of the
redeclaration chain) and identified by a :class:`DeclKey`.

Template instantiations and implicit members are never children in the
libclang tree, so the index only ever sees what the programmer wrote.  The
location map lets the collector fold an implicit node back onto the written
declaration at the same spot.

Walk scope
----------
Namespaces, ``extern "C"`` blocks and class definitions are entered;
function bodies never are (local declarations belong to their function).
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterator, List, Optional, Set, Tuple

from clang import cindex

from .dependency_graph import DeclKey
from .frontend import ParsedUnit, extent_of
from .source_text import SourceBuffer

_log = logging.getLogger(__name__)

CK = cindex.CursorKind


def _kinds(*names: str) -> FrozenSet["cindex.CursorKind"]:
    """CursorKinds by name, skipping those an older binding does not define."""
    return frozenset(getattr(CK, n) for n in names if hasattr(CK, n))


# ═══════════════════════════════════════════════════════════════════════════
#  PART 1 — CURSOR KIND CLASSES
# ═══════════════════════════════════════════════════════════════════════════

RECORD_KINDS = _kinds(
    "CLASS_DECL", "STRUCT_DECL", "UNION_DECL",
    "CLASS_TEMPLATE", "CLASS_TEMPLATE_PARTIAL_SPECIALIZATION",
)

FUNCTION_KINDS = _kinds(
    "FUNCTION_DECL", "CXX_METHOD", "CONSTRUCTOR", "DESTRUCTOR",
    "CONVERSION_FUNCTION", "FUNCTION_TEMPLATE",
)

ALIAS_KINDS = _kinds("TYPEDEF_DECL", "TYPE_ALIAS_DECL", "TYPE_ALIAS_TEMPLATE_DECL",
                     "NAMESPACE_ALIAS")

# Declarations that become nodes of the requires graph.
NODE_KINDS = (RECORD_KINDS | FUNCTION_KINDS | ALIAS_KINDS
              | _kinds("ENUM_DECL", "ENUM_CONSTANT_DECL", "FIELD_DECL", "VAR_DECL"))

# Written declarations that are always kept; references inside them are roots.
ALWAYS_KEPT_KINDS = _kinds(
    "STATIC_ASSERT", "USING_DIRECTIVE", "USING_DECLARATION", "CONCEPT_DECL",
    "UNEXPOSED_DECL",
)

SCOPE_KINDS = _kinds("NAMESPACE", "LINKAGE_SPEC")

# Entities a namespace-scope forward declaration can be redundant for.
FORWARD_DECLARABLE_KINDS = (
    RECORD_KINDS | _kinds("FUNCTION_DECL", "FUNCTION_TEMPLATE", "ENUM_DECL", "VAR_DECL")
)


def is_scope_block(cursor: "cindex.Cursor", buffer: SourceBuffer) -> bool:
    """Namespaces and ``extern "C"`` blocks (older bindings expose the latter as unexposed)."""
    if cursor.kind in SCOPE_KINDS:
        return True
    if cursor.kind == CK.UNEXPOSED_DECL:
        start = cursor.extent.start.offset
        return buffer.code.startswith("extern", start)
    return False


def is_record_definition(cursor: "cindex.Cursor") -> bool:
    return cursor.kind in RECORD_KINDS and cursor.is_definition()


# ═══════════════════════════════════════════════════════════════════════════
#  PART 2 — INDEX ENTRIES
# ═══════════════════════════════════════════════════════════════════════════

LexicalKey = Tuple[int, int, str]


def lexical_key(cursor: "cindex.Cursor") -> LexicalKey:
    start, end = extent_of(cursor)
    return (start, end, cursor.kind.name)


@dataclass(eq=False)
class LexicalDecl:
    """
    One written occurrence of a declaration in the analysed file.

    Attributes
    ----------
    cursor : cindex.Cursor
        The occurrence.
    semantic : DeclKey
        Identity of the semantic declaration it belongs to.
    start, end : int
        Extent offsets, end exclusive.
    parent_kind : cindex.CursorKind
        Kind of the lexical container (TU, namespace, class, …).
    is_definition : bool
        Whether this occurrence is the definition.
    group_size : int
        Number of sibling declarations sharing this start offset
        (``int a, b;`` or ``struct S {} s;``).
    """
    cursor: "cindex.Cursor"
    semantic: DeclKey
    start: int
    end: int
    parent_kind: "cindex.CursorKind"
    is_definition: bool
    group_size: int = 1

    @property
    def key(self) -> LexicalKey:
        return (self.start, self.end, self.cursor.kind.name)

    @property
    def kind(self) -> "cindex.CursorKind":
        return self.cursor.kind

    @property
    def at_namespace_scope(self) -> bool:
        return self.parent_kind in (CK.TRANSLATION_UNIT, CK.NAMESPACE)

    def __repr__(self) -> str:
        return f"LexicalDecl({self.kind.name} {self.semantic.name} [{self.start}, {self.end}))"


# ═══════════════════════════════════════════════════════════════════════════
#  PART 3 — THE INDEX
# ═══════════════════════════════════════════════════════════════════════════

class DeclIndex:
    """Written declarations of the main file and their semantic identities."""

    def __init__(self, unit: ParsedUnit, buffer: SourceBuffer) -> None:
        self.unit = unit
        self.buffer = buffer
        self.by_lexical: Dict[LexicalKey, LexicalDecl] = {}
        self._occurrences: Dict[DeclKey, List[LexicalDecl]] = defaultdict(list)
        self._by_location: Dict[Tuple[str, int], DeclKey] = {}
        self._by_spelling: Dict[str, Set[DeclKey]] = defaultdict(set)
        self._names: Dict[Tuple[str, int, str], str] = {}

    # ── Identity ──────────────────────────────────────────────────────

    def qualified_name(self, cursor: "cindex.Cursor") -> str:
        loc = cursor.location
        memo = (self.unit.file_of(cursor), loc.offset, cursor.kind.name)
        cached = self._names.get(memo)
        if cached is not None:
            return cached
        parts: List[str] = []
        c: Optional["cindex.Cursor"] = cursor
        while c is not None and c.kind != CK.TRANSLATION_UNIT:
            parts.append(c.spelling or "(anonymous)")
            c = c.semantic_parent
        name = "::".join(reversed(parts))
        self._names[memo] = name
        return name

    def key_of(self, cursor: "cindex.Cursor") -> DeclKey:
        """DeclKey of the semantic declaration *cursor* belongs to."""
        canon = cursor.canonical
        return DeclKey(
            file=self.unit.file_of(canon),
            offset=canon.location.offset,
            name=self.qualified_name(canon),
            kind=canon.kind.name,
        )

    def lookup(self, cursor: "cindex.Cursor") -> Optional[DeclKey]:
        """
        Map any declaration cursor (including implicit or instantiated ones)
        onto an indexed semantic declaration, or None if none matches.
        """
        key = self.key_of(cursor)
        if key in self._occurrences:
            return key
        return self._by_location.get((key.file, key.offset))

    # ── Queries ───────────────────────────────────────────────────────

    def __contains__(self, key: object) -> bool:
        return key in self._occurrences

    def semantic_keys(self) -> Iterator[DeclKey]:
        return iter(self._occurrences)

    def occurrences(self, key: DeclKey) -> List[LexicalDecl]:
        """Written occurrences of *key*, in source order."""
        return self._occurrences.get(key, [])

    def by_spelling(self, spelling: str) -> Set[DeclKey]:
        return self._by_spelling.get(spelling, set())

    def get(self, cursor: "cindex.Cursor") -> Optional[LexicalDecl]:
        return self.by_lexical.get(lexical_key(cursor))

    def __len__(self) -> int:
        return len(self.by_lexical)

    # ── Construction ──────────────────────────────────────────────────

    def build(self) -> "DeclIndex":
        self._index_children(self.unit.root)
        for occ in self._occurrences.values():
            occ.sort(key=lambda d: d.start)
        _log.debug("declaration index: %d occurrences of %d declarations",
                   len(self.by_lexical), len(self._occurrences))
        return self

    def _index_children(self, container: "cindex.Cursor") -> None:
        siblings: List[LexicalDecl] = []
        for child in container.get_children():
            if not self.unit.is_main(child):
                continue
            if is_scope_block(child, self.buffer):
                self._index_children(child)
                continue
            if child.kind not in NODE_KINDS:
                continue
            decl = self._record(child, container.kind)
            siblings.append(decl)
            if is_record_definition(child) or child.kind == CK.ENUM_DECL:
                self._index_children(child)

        by_start: Dict[int, List[LexicalDecl]] = defaultdict(list)
        for decl in siblings:
            by_start[decl.start].append(decl)
        for group in by_start.values():
            for decl in group:
                decl.group_size = len(group)

    def _record(self, cursor: "cindex.Cursor", parent_kind) -> LexicalDecl:
        start, end = extent_of(cursor)
        semantic = self.key_of(cursor)
        decl = LexicalDecl(
            cursor=cursor,
            semantic=semantic,
            start=start,
            end=end,
            parent_kind=parent_kind,
            is_definition=cursor.is_definition(),
        )
        self.by_lexical[decl.key] = decl
        self._occurrences[semantic].append(decl)
        self._by_location.setdefault((self.unit.main_file, cursor.location.offset), semantic)
        if cursor.spelling:
            self._by_spelling[cursor.spelling].add(semantic)
        return decl
