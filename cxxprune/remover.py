"""
cxxprune.remover
================

Lexical Declaration Remover: decides, for every written declaration of the
analysed file, whether its text goes.

Per occurrence
--------------
    ┌──────────────────────────────────────┬────────────────────────────────┐
    │ occurrence                           │ decision                       │
    ├──────────────────────────────────────┼────────────────────────────────┤
    │ entity not used                      │ delete                         │
    │ declarator group (``int a, b;``)     │ delete only if all unused      │
    │ used, namespace-scope, not a         │ delete if redundant (below)    │
    │   definition                         │                                │
    │ typedef / alias repeated after its   │ delete                         │
    │   canonical occurrence               │                                │
    │ class member                         │ delete only if unused          │
    └──────────────────────────────────────┴────────────────────────────────┘

Redundancy of forward declarations
----------------------------------
The occurrences of one entity are scanned in source order.  A declaration
that is not a definition goes when an earlier occurrence stays, or when the
next occurrence follows with no reference to the entity in between.  An
occurrence that carries something the others may not stays regardless:

    • a ``=`` (default argument, ``= delete``, initializer)
    • an attribute (``[[``, ``__attribute__``, ``__declspec``, ``alignas``)
    • a specifier the definition does not repeat (``static``, ``inline``, …)
    • placement inside ``extern "C"``
    • an explicit instantiation declaration
    • membership in a declarator group

Every deletion is widened over its ``;`` and its line, and vetted by the
preprocessor pass so it never tears a conditional construct apart.

After the walk, namespaces and ``extern "C"`` blocks whose bodies became
blank are removed, innermost first.
"""

from __future__ import annotations

import bisect
import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, List, Optional, Sequence, Set

from clang import cindex

from .decl_index import (
    ALIAS_KINDS,
    FORWARD_DECLARABLE_KINDS,
    NODE_KINDS,
    RECORD_KINDS,
    LexicalDecl,
    LexicalKey,
    is_record_definition,
    is_scope_block,
    lexical_key,
)
from .dependency_graph import DeclKey
from .frontend import extent_of
from .source_text import Range

if TYPE_CHECKING:
    from .optimizer import OptimizerContext

_log = logging.getLogger(__name__)

_ATTRIBUTE_RE = re.compile(r"\[\[|\b__attribute__\b|\b__declspec\b|\balignas\b")
_QUALIFIER_RE = re.compile(r"\b(static|inline|constexpr|consteval|constinit|thread_local)\b")
_EXPLICIT_INSTANTIATION_RE = re.compile(r"^\s*(extern\s+)?template\s*(?!<)")

REDUNDANCY_KINDS = FORWARD_DECLARABLE_KINDS | RECORD_KINDS


@dataclass
class ScopeBlock:
    """A braced namespace or ``extern "C"`` block seen during the walk."""
    cursor: "cindex.Cursor"
    depth: int
    start: int
    end: int
    body: Range
    has_children: bool


class LexicalRemover:
    """Registers deletions of unused and redundant declaration text."""

    def __init__(self, ctx: "OptimizerContext") -> None:
        self.ctx = ctx
        self.buffer = ctx.buffer
        self.index = ctx.index
        self.used = ctx.used
        self.rewriter = ctx.rewriter
        self.removed: Set[LexicalKey] = ctx.removed
        self.scopes: List[ScopeBlock] = []
        self._redundant: Set[LexicalKey] = set()

    # ── Driver ────────────────────────────────────────────────────────

    def run(self) -> None:
        self._plan_redundancy()
        self._process_children(self.ctx.unit.root, 0)
        _log.debug("lexical remover: %d occurrences removed (%d planned as redundant)",
                   len(self.removed), len(self._redundant))

    def finalize(self) -> None:
        """Delete scope blocks left with nothing but ignorable text, innermost first."""
        ignorable = self.ctx.preprocessor.ignorable_ranges(self.rewriter)
        dropped = 0
        for block in sorted(self.scopes, key=lambda b: -b.depth):
            if not block.has_children:
                continue
            covered = self.rewriter.removed_ranges() + ignorable
            if not self.buffer.is_blank(block.body[0], block.body[1], covered):
                continue
            if self._delete(block.start, block.end, ()):
                self.removed.add(lexical_key(block.cursor))
                dropped += 1
        _log.debug("lexical remover: %d emptied scope blocks removed", dropped)

    # ── Walk ──────────────────────────────────────────────────────────

    def _process_children(self, container: "cindex.Cursor", depth: int) -> None:
        groups: Dict[int, List[LexicalDecl]] = {}
        for child in container.get_children():
            if not self.ctx.unit.is_main(child):
                continue
            if is_scope_block(child, self.buffer):
                self._process_scope(child, depth + 1)
                continue
            if child.kind not in NODE_KINDS:
                continue
            decl = self.index.get(child)
            if decl is not None:
                groups.setdefault(decl.start, []).append(decl)
        for group in groups.values():
            self._process_group(group, depth)

    def _process_scope(self, block: "cindex.Cursor", depth: int) -> None:
        start, end = extent_of(block)
        children = [c for c in block.get_children() if self.ctx.unit.is_main(c)]
        body = self._scope_body(block, start, end, children)
        if body is None:
            # extern "C" applied to a single declaration, without braces
            decls = [self.index.get(c) for c in children if c.kind in NODE_KINDS]
            decls = [d for d in decls if d is not None]
            if decls and all(d.semantic not in self.used for d in decls):
                if self._delete(start, end, decls):
                    self.removed.add(lexical_key(block))
            return
        self.scopes.append(ScopeBlock(block, depth, start, end, body, bool(children)))
        self._process_children(block, depth)

    def _scope_body(self, block, start, end, children) -> Optional[Range]:
        limit = extent_of(children[0])[0] if children else end
        opener = self.buffer.find_forward("{", start, limit)
        if opener == -1 or self.buffer.code[end - 1:end] != "}":
            return None
        return (opener + 1, end - 1)

    def _process_group(self, group: List[LexicalDecl], depth: int) -> None:
        if all(d.semantic not in self.used for d in group):
            self._delete(min(d.start for d in group), max(d.end for d in group), group)
            return
        if len(group) == 1 and group[0].key in self._redundant:
            if self._delete(group[0].start, group[0].end, group):
                return
        for decl in group:
            if decl.semantic in self.used and is_record_definition(decl.cursor):
                self._process_children(decl.cursor, depth)

    # ── Deletion ──────────────────────────────────────────────────────

    def _delete(self, start: int, end: int, decls: Sequence[LexicalDecl]) -> bool:
        if end <= start:
            return False
        start = self.buffer.extend_over_attributes(start)
        end = self.buffer.extend_to_semicolon(end)
        lo, hi = self.buffer.expand_to_lines(start, end)
        if not self.ctx.preprocessor.safe_to_delete(lo, hi, self.rewriter):
            _log.debug("kept [%d, %d): deletion would break preprocessor structure", lo, hi)
            return False
        self.rewriter.remove(lo, hi)
        for d in decls:
            self.removed.add(d.key)
        return True

    # ── Redundancy planning ───────────────────────────────────────────

    def _plan_redundancy(self) -> None:
        for key in self.index.semantic_keys():
            if key not in self.used:
                continue
            occurrences = self.index.occurrences(key)
            if len(occurrences) < 2:
                continue
            kind = occurrences[0].kind
            if kind in ALIAS_KINDS:
                self._plan_alias_repeats(key, occurrences)
            elif kind in REDUNDANCY_KINDS:
                self._plan_forward_declarations(key, occurrences)

    def _plan_alias_repeats(self, key: DeclKey, occurrences: List[LexicalDecl]) -> None:
        canonical = next((o for o in occurrences if o.cursor.location.offset == key.offset), None)
        if canonical is None:
            return
        for occ in occurrences:
            if (occ is not canonical and occ.start > canonical.start
                    and occ.at_namespace_scope and occ.group_size == 1):
                self._redundant.add(occ.key)

    def _plan_forward_declarations(self, key: DeclKey, occurrences: List[LexicalDecl]) -> None:
        definition = next((o for o in occurrences if o.is_definition), None)
        reference = definition or occurrences[-1]
        kept_before = False
        for i, occ in enumerate(occurrences):
            if occ.is_definition or occ is reference or self._carries_info(occ, reference):
                kept_before = True
                continue
            following = occurrences[i + 1] if i + 1 < len(occurrences) else None
            if kept_before or (following is not None
                               and not self._referenced_between(key, occ.end, following.start)):
                self._redundant.add(occ.key)
            else:
                kept_before = True

    def _carries_info(self, occ: LexicalDecl, reference: LexicalDecl) -> bool:
        if occ.group_size > 1 or not occ.at_namespace_scope:
            return True
        text = self.buffer.code[occ.start:occ.end]
        if "=" in text or _ATTRIBUTE_RE.search(text):
            return True
        if self._is_explicit_instantiation(occ):
            return True
        own = set(_QUALIFIER_RE.findall(self._head(occ)))
        return bool(own - set(_QUALIFIER_RE.findall(self._head(reference))))

    def _head(self, occ: LexicalDecl) -> str:
        """Text of *occ* before its body, plus any specifiers written before its extent."""
        line_start = self.buffer.line_start(self.buffer.line_of(occ.start))
        brace = self.buffer.find_forward("{", occ.start, occ.end)
        return self.buffer.code[line_start:brace if brace != -1 else occ.end]

    def _is_explicit_instantiation(self, occ: LexicalDecl) -> bool:
        line_start = self.buffer.line_start(self.buffer.line_of(occ.start))
        return bool(_EXPLICIT_INSTANTIATION_RE.match(self.buffer.code[line_start:occ.end]))

    def _referenced_between(self, key: DeclKey, lo: int, hi: int) -> bool:
        sites = self.ctx.ref_sites.get(key, [])
        i = bisect.bisect_left(sites, lo)
        return i < len(sites) and sites[i] < hi
