"""
cxxprune.collector
==================

Dependency Collector: one walk over the analysed file that builds the
requires graph, its root set and the reference sites of every declaration.

Owners and edges
----------------
Every reference is attributed to its *owner*, the innermost enclosing
declaration that is a graph node (a function, a class, a namespace-scope
variable, a typedef, …).  Declarations local to a function body are part of
their function and never become nodes.

    ┌────────────────────────────────────────────────────────────────────┐
    │  reference inside owner O to declaration D   →  O → D              │
    │  member M of record / enum P                 →  M → P              │
    │  record P and members it cannot live without →  P → M              │
    │     (fields, ctors, dtor, conversions, virtuals, operators,        │
    │      member typedefs, static data, anonymous records,              │
    │      members named like implicitly called protocol functions)      │
    │  enum P and its enumerators                  →  P → E              │
    │  specialization S of template T              →  S → T              │
    │  primary class template T and its            →  T → S              │
    │     specializations S                                              │
    │  record type R named in a free operator F's parameters → R → F     │
    │  instantiation I of template T               →  I → T              │
    └────────────────────────────────────────────────────────────────────┘

Calls made from inside system-header templates (``std::sort`` calling
``operator<``, ``std::set`` calling the comparator, range-for calling
``begin``) are invisible here, which is why the structural edges above err
on the side of keeping.

Dependent names that cannot be resolved at template definition time
(``t.foo()``) fall back to every written declaration with that spelling.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Dict, FrozenSet, List, Set

from clang import cindex

from .config import OptimizerConfig
from .decl_index import (
    ALWAYS_KEPT_KINDS,
    FUNCTION_KINDS,
    NODE_KINDS,
    RECORD_KINDS,
    DeclIndex,
    is_record_definition,
    is_scope_block,
)
from .dependency_graph import INSTANTIATION, DeclKey, RequiresGraph
from .frontend import (
    MacroExpansion,
    ParsedUnit,
    extent_of,
    overloaded_decls,
    specialized_template,
    traverse,
)

_log = logging.getLogger(__name__)

CK = cindex.CursorKind

# Members called implicitly by language rules or by library templates.
PROTOCOL_NAMES: FrozenSet[str] = frozenset({
    "begin", "end", "cbegin", "cend", "rbegin", "rend",
    "size", "empty", "data", "swap", "get",
    "hash", "what", "operator()",
})

_KEPT_WITH_RECORD = frozenset({
    CK.FIELD_DECL, CK.CONSTRUCTOR, CK.DESTRUCTOR, CK.CONVERSION_FUNCTION,
    CK.TYPEDEF_DECL, CK.TYPE_ALIAS_DECL, CK.VAR_DECL,
}) | frozenset(getattr(CK, n) for n in ("TYPE_ALIAS_TEMPLATE_DECL",) if hasattr(CK, n))

_SPECIALIZABLE = RECORD_KINDS | frozenset({CK.FUNCTION_DECL, CK.VAR_DECL, CK.CXX_METHOD})

_NAMESPACE_SCOPES = frozenset({CK.TRANSLATION_UNIT, CK.NAMESPACE, CK.LINKAGE_SPEC})

_IGNORED_TARGETS = frozenset({
    CK.NAMESPACE, CK.PARM_DECL, CK.TEMPLATE_TYPE_PARAMETER,
    CK.TEMPLATE_NON_TYPE_PARAMETER, CK.TEMPLATE_TEMPLATE_PARAMETER,
})

_EXPRESSION_REFS = frozenset({CK.DECL_REF_EXPR, CK.MEMBER_REF_EXPR, CK.CALL_EXPR})


def is_anonymous(cursor: "cindex.Cursor") -> bool:
    spelling = cursor.spelling
    return not spelling or "(anonymous" in spelling or "(unnamed" in spelling


def is_operator(cursor: "cindex.Cursor") -> bool:
    return cursor.spelling.startswith("operator")


def member_name(cursor: "cindex.Cursor") -> str:
    """
    Name of the member in a dependent member access (``t.foo``,
    ``p->template get<0>``), read from the tokens since libclang leaves
    such a cursor unnamed.
    """
    name = last = ""
    after_access = False
    for tok in cursor.get_tokens():
        if tok.spelling in (".", "->"):
            after_access = True
        elif tok.kind == cindex.TokenKind.IDENTIFIER:
            last = tok.spelling
            if after_access:
                name = tok.spelling
                after_access = False
    return name or last


class DependencyCollector:
    """
    Builds the requires graph for one translation unit.

    Attributes
    ----------
    graph : RequiresGraph
        Frozen after :meth:`collect`.
    ref_sites : Dict[DeclKey, List[int]]
        Main-file offsets at which each declaration is referenced, sorted.
    macro_expansions : List[MacroExpansion]
        Expansions met inside declarations (the front end lists the
        top-level ones).
    """

    def __init__(self, unit: ParsedUnit, index: DeclIndex, config: OptimizerConfig) -> None:
        self.unit = unit
        self.index = index
        self.config = config
        self.graph = RequiresGraph()
        self.ref_sites: Dict[DeclKey, List[int]] = defaultdict(list)
        self.macro_expansions: List[MacroExpansion] = []
        self._unresolved: Dict[DeclKey, Set[str]] = defaultdict(set)
        self._instantiations: Set[DeclKey] = set()
        self._side_effects = False

    # ── Driver ────────────────────────────────────────────────────────

    def collect(self) -> RequiresGraph:
        self._visit_scope(self.unit.root)
        self._resolve_dependent_names()
        for sites in self.ref_sites.values():
            sites.sort()
        if not self.graph.roots:
            _log.warning("no entry point '%s' and no kept identifiers: "
                         "every removable declaration will be removed",
                         self.config.entry_point)
        self.graph.freeze()
        return self.graph

    def _visit_scope(self, container: "cindex.Cursor") -> None:
        for child in container.get_children():
            if not self.unit.is_main(child):
                continue
            if is_scope_block(child, self.index.buffer):
                self._visit_scope(child)
            elif child.kind in NODE_KINDS:
                self._visit_decl(child)
            elif child.kind in ALWAYS_KEPT_KINDS:
                key = self._kept_key(child)
                self.graph.add_root(key)
                self._scan(child, key)

    def _kept_key(self, cursor: "cindex.Cursor") -> DeclKey:
        start, _ = extent_of(cursor)
        return DeclKey(self.unit.main_file, start, f"<{cursor.kind.name.lower()}>",
                       cursor.kind.name)

    # ── Declarations ──────────────────────────────────────────────────

    def _visit_decl(self, cursor: "cindex.Cursor") -> None:
        decl = self.index.get(cursor)
        key = decl.semantic if decl is not None else self.index.key_of(cursor)
        self.graph.add_node(key)
        self._link_structure(cursor, key)
        self._check_roots(cursor, key)

        if is_record_definition(cursor) or cursor.kind == CK.ENUM_DECL:
            for child in cursor.get_children():
                if child.kind in NODE_KINDS:
                    self._visit_decl(child)
                else:
                    self._scan(child, key)
            return

        self._side_effects = False
        for child in cursor.get_children():
            self._scan(child, key)
        if (cursor.kind == CK.VAR_DECL and self._side_effects
                and cursor.semantic_parent.kind in _NAMESPACE_SCOPES):
            self.graph.add_root(key)

    def _link_structure(self, cursor: "cindex.Cursor", key: DeclKey) -> None:
        parent = cursor.semantic_parent
        if parent is not None and (parent.kind in RECORD_KINDS or parent.kind == CK.ENUM_DECL):
            pkey = self._resolve(parent)[0]
            self.graph.add_edge(key, pkey)
            if self._kept_with_parent(cursor, parent):
                self.graph.add_edge(pkey, key)
        elif is_operator(cursor) or cursor.spelling in PROTOCOL_NAMES:
            self._link_parameter_types(cursor, key)

        if cursor.kind in _SPECIALIZABLE:
            template = specialized_template(cursor)
            if template is not None:
                tkey = self._resolve(template)[0]
                self.graph.add_edge(key, tkey)
                # A use of S<int> reaches only the primary S (TEMPLATE_REF).
                if cursor.kind in RECORD_KINDS:
                    self.graph.add_edge(tkey, key)
                if not self.unit.is_main(template):
                    self.graph.add_root(key)

    @staticmethod
    def _kept_with_parent(cursor: "cindex.Cursor", parent: "cindex.Cursor") -> bool:
        kind = cursor.kind
        if parent.kind == CK.ENUM_DECL or kind in _KEPT_WITH_RECORD:
            return True
        if kind in RECORD_KINDS:
            return is_anonymous(cursor)
        if kind in (CK.CXX_METHOD, CK.FUNCTION_TEMPLATE):
            return (cursor.is_virtual_method() or is_operator(cursor)
                    or cursor.spelling in PROTOCOL_NAMES)
        return False

    def _link_parameter_types(self, function: "cindex.Cursor", key: DeclKey) -> None:
        """Record types in a free operator's parameters keep the operator."""
        for param in function.get_children():
            if param.kind != CK.PARM_DECL:
                continue

            def enter(c: "cindex.Cursor") -> bool:
                if c.kind in (CK.TYPE_REF, CK.TEMPLATE_REF):
                    ref = c.referenced
                    if ref is not None and (ref.kind in RECORD_KINDS or ref.kind == CK.ENUM_DECL):
                        self.graph.add_edge(self._resolve(ref)[0], key)
                return True

            traverse(param, enter)

    def _check_roots(self, cursor: "cindex.Cursor", key: DeclKey) -> None:
        spelling = cursor.spelling
        if spelling in self.config.identifiers_to_keep:
            self.graph.add_root(key)
        elif (spelling == self.config.entry_point and cursor.kind == CK.FUNCTION_DECL
                and cursor.semantic_parent.kind == CK.TRANSLATION_UNIT):
            self.graph.add_root(key)
        elif spelling.startswith("<deduction guide"):
            self.graph.add_root(key)

    # ── References ────────────────────────────────────────────────────

    def _scan(self, cursor: "cindex.Cursor", owner: DeclKey) -> None:
        """Collect references of *cursor* and all its descendants into *owner*."""

        def enter(c: "cindex.Cursor") -> bool:
            self._reference(c, owner)
            return True

        enter(cursor)
        traverse(cursor, enter)

    def _reference(self, c: "cindex.Cursor", owner: DeclKey) -> None:
        kind = c.kind
        if kind == CK.MACRO_INSTANTIATION:
            start, end = extent_of(c)
            self.macro_expansions.append(
                MacroExpansion(c.spelling, self.unit.file_of(c), start, end))
            return
        if kind == CK.LAMBDA_EXPR:
            self._side_effects = True
            return
        if kind == CK.OVERLOADED_DECL_REF:
            for decl in overloaded_decls(c):
                self._add_target(owner, decl, c)
            if c.spelling:
                self._unresolved[owner].add(c.spelling)
            return
        if not (kind.is_reference() or kind in _EXPRESSION_REFS):
            return

        ref = c.referenced
        if ref is None or not ref.kind.is_declaration():
            name = c.spelling
            if not name and kind == CK.MEMBER_REF_EXPR:
                name = member_name(c)
            if kind in _EXPRESSION_REFS and name:
                self._unresolved[owner].add(name)
            return
        if kind == CK.CALL_EXPR and ref.kind in FUNCTION_KINDS and self.unit.is_main(ref):
            self._side_effects = True
        self._add_target(owner, ref, c)

    def _add_target(self, owner: DeclKey, ref: "cindex.Cursor", site: "cindex.Cursor") -> None:
        if ref.kind in _IGNORED_TARGETS:
            return
        if ref.kind == CK.VAR_DECL and ref.semantic_parent.kind in FUNCTION_KINDS:
            return
        keys = self._resolve(ref)
        self.graph.add_edge(owner, keys[0])
        if self.unit.is_main(site):
            offset = site.location.offset
            for key in keys:
                self.ref_sites[key].append(offset)

    def _resolve(self, ref: "cindex.Cursor", depth: int = 0) -> List[DeclKey]:
        """
        Semantic keys for a referenced declaration, most specific first.

        An instantiation resolves to its own node followed by the keys of
        the template it was instantiated from.
        """
        key = self.index.key_of(ref)
        if key in self.index:
            return [key]
        template = specialized_template(ref) if depth < 4 else None
        if template is None:
            return [self.index.lookup(ref) or key]
        chain = self._resolve(template, depth + 1)
        canon = ref.canonical
        inst = DeclKey(self.unit.file_of(canon), canon.location.offset,
                       canon.get_usr() or canon.displayname, INSTANTIATION)
        if inst not in self._instantiations:
            self._instantiations.add(inst)
            self.graph.add_edge(inst, chain[0])
        return [inst] + chain

    def _resolve_dependent_names(self) -> None:
        for owner, names in self._unresolved.items():
            for name in names:
                for key in self.index.by_spelling(name):
                    self.graph.add_edge(owner, key)
