"""
cxxprune.preprocessor
=====================

Preprocessor Region & Macro Remover.

Branches the preprocessor did not take never reach the syntax tree, so this
pass works from the text: every directive of the analysed file is parsed by
a small PEG grammar, conditional constructs are assembled from the
directives, and the front end's skipped ranges say which branches were
taken.

Two actions run once the declaration passes are done:

    ┌──────────────────────────────────────────────────────────────────────┐
    │ (a) inactive code                                                    │
    │     construct mentions a protected macro  →  left untouched          │
    │     no branch taken                       →  whole construct deleted │
    │     some branch taken                     →  other bodies deleted    │
    │                                                                      │
    │ (b) dead macros                                                      │
    │     a #define in active code is deleted iff the macro is not         │
    │     protected, every usage lies in removed text, and no surviving    │
    │     macro body mentions it (iterated to a fixpoint)                  │
    └──────────────────────────────────────────────────────────────────────┘

Usages of a macro are the expansions the front end recorded (in any file),
identifiers in conditional directives and identifiers in skipped bodies that
survive.

The same knowledge answers two questions for the declaration remover:
which text counts as ignorable when deciding that a namespace became empty,
and whether a deletion would tear a directive structure apart.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence, Set, Tuple

from parsimonious.grammar import Grammar
from parsimonious.nodes import NodeVisitor

from .frontend import MacroExpansion
from .rewriter import SmartRewriter
from .source_text import Range, SourceBuffer

_log = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  PART 1 — DIRECTIVE GRAMMAR (Parsimonious PEG)
# ═══════════════════════════════════════════════════════════════════════════

DIRECTIVE_GRAMMAR = Grammar(r'''
    directive       = ws "#" ws command
    command         = define / undef / conditional / include / other

    define          = "define" ws_req identifier params? rest
    undef           = "undef" ws_req identifier rest
    conditional     = cond_keyword rest
    include         = include_keyword rest
    other           = (identifier rest) / rest

    cond_keyword    = ~r"(ifdef|ifndef|if|elifdef|elifndef|elif|else|endif)\b"
    include_keyword = ~r"(include_next|include|import)\b"
    params          = "(" ~r"[^)]*" ")"
    identifier      = ~r"[A-Za-z_][A-Za-z0-9_]*"
    rest            = ~r".*"
    ws              = ~r"[ \t\f\v]*"
    ws_req          = ~r"[ \t\f\v]+"
''')

OPENERS = frozenset({"if", "ifdef", "ifndef"})
ALTERNATIVES = frozenset({"elif", "elifdef", "elifndef", "else"})

_IDENT_RE = re.compile(r"\b[A-Za-z_][A-Za-z0-9_]*")
_CONTINUATION_RE = re.compile(r"\\\r?\n")

# Identifiers of #if expressions that are never macro names.
_EXPRESSION_WORDS = frozenset({
    "defined", "__has_include", "__has_include_next", "__has_attribute",
    "__has_cpp_attribute", "__has_builtin", "__has_feature", "__has_extension",
    "true", "false",
})


def identifiers(text: str) -> Set[str]:
    return set(_IDENT_RE.findall(text))


@dataclass
class Directive:
    """
    One logical directive line (continuations joined).

    ``start`` is the offset of the line start and ``end`` the offset of the
    last character's successor, excluding the final line break.
    """
    kind: str                   # define / undef / conditional / include / other
    keyword: str
    name: str = ""
    params: Optional[str] = None
    body: str = ""
    start: int = 0
    end: int = 0
    line: int = 0

    @property
    def condition_identifiers(self) -> Set[str]:
        if self.kind != "conditional":
            return set()
        return identifiers(self.body) - _EXPRESSION_WORDS


class DirectiveParser(NodeVisitor):
    """Turns a directive parse tree into ``(kind, keyword, name, params, body)``."""

    def generic_visit(self, node, visited_children):
        return visited_children or node

    def visit_directive(self, node, visited_children):
        return visited_children[3]

    def visit_command(self, node, visited_children):
        return visited_children[0]

    def visit_define(self, node, visited_children):
        _, _, name, params, body = node.children
        return ("define", "define", name.text, params.text or None, body.text.strip())

    def visit_undef(self, node, visited_children):
        _, _, name, rest = node.children
        return ("undef", "undef", name.text, None, rest.text.strip())

    def visit_conditional(self, node, visited_children):
        keyword, rest = node.children
        return ("conditional", keyword.text, "", None, rest.text.strip())

    def visit_include(self, node, visited_children):
        keyword, rest = node.children
        return ("include", keyword.text, "", None, rest.text.strip())

    def visit_other(self, node, visited_children):
        words = node.text.split(None, 1)
        keyword = words[0] if words else ""
        return ("other", keyword, "", None, node.text.strip())


def parse_directive(logical: str, start: int = 0, end: int = 0, line: int = 0) -> Directive:
    """Parse one directive line, e.g. ``"#define MAX(a, b) ((a) > (b) ? (a) : (b))"``."""
    kind, keyword, name, params, body = DirectiveParser().visit(DIRECTIVE_GRAMMAR.parse(logical))
    return Directive(kind=kind, keyword=keyword, name=name, params=params, body=body,
                     start=start, end=end, line=line)


def scan_directives(buffer: SourceBuffer) -> List[Directive]:
    """Every directive of *buffer* in source order (comments are ignored)."""
    code = buffer.code
    n = len(code)
    found: List[Directive] = []
    pos = 0
    while pos <= n:
        eol = code.find("\n", pos)
        if eol == -1:
            eol = n
        if code[pos:eol].lstrip(" \t\f\v").startswith("#"):
            end = eol
            while code[pos:end].rstrip("\r").endswith("\\") and end < n:
                nxt = code.find("\n", end + 1)
                end = n if nxt == -1 else nxt
            logical = _CONTINUATION_RE.sub(" ", code[pos:end]).rstrip("\r")
            found.append(parse_directive(logical, pos, end, buffer.line_of(pos)))
            eol = end
        pos = eol + 1
    return found


# ═══════════════════════════════════════════════════════════════════════════
#  PART 2 — CONDITIONAL CONSTRUCTS AND MACROS
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(eq=False)
class Branch:
    """One arm of a conditional construct: its opener and the body after it."""
    opener: Directive
    body_start: int
    body_end: int = 0
    taken: bool = True
    region: Optional["ConditionalRegion"] = field(default=None, repr=False)

    @property
    def body(self) -> Range:
        return (self.body_start, self.body_end)


@dataclass(eq=False)
class ConditionalRegion:
    """An ``#if … #endif`` construct."""
    branches: List[Branch] = field(default_factory=list)
    endif: Optional[Directive] = None
    parent: Optional[Branch] = None
    frozen: bool = False

    @property
    def start(self) -> int:
        return self.branches[0].opener.start

    @property
    def end(self) -> int:
        return self.endif.end if self.endif is not None else self.branches[-1].body_end

    @property
    def directives(self) -> List[Directive]:
        found = [b.opener for b in self.branches]
        if self.endif is not None:
            found.append(self.endif)
        return found

    @property
    def mentions(self) -> Set[str]:
        names: Set[str] = set()
        for branch in self.branches:
            names |= branch.opener.condition_identifiers
        return names

    @property
    def any_taken(self) -> bool:
        return any(b.taken for b in self.branches)


@dataclass
class MacroRecord:
    """Everything known about one macro name of the analysed file."""
    name: str
    definitions: List[Directive] = field(default_factory=list)
    usages: List[Range] = field(default_factory=list)
    protected: bool = False

    @property
    def body_identifiers(self) -> Set[str]:
        names: Set[str] = set()
        for d in self.definitions:
            names |= identifiers(d.body)
        names.discard(self.name)
        return names


def build_regions(
    directives: Sequence[Directive],
    buffer: SourceBuffer,
) -> List[ConditionalRegion]:
    """Assemble conditional constructs; unbalanced directives are logged and dropped."""
    regions: List[ConditionalRegion] = []
    stack: List[ConditionalRegion] = []

    def after(d: Directive) -> int:
        return min(d.end + 1, len(buffer))

    for d in directives:
        if d.kind != "conditional":
            continue
        if d.keyword in OPENERS:
            parent = stack[-1].branches[-1] if stack else None
            region = ConditionalRegion(parent=parent)
            region.branches.append(Branch(opener=d, body_start=after(d), region=region))
            stack.append(region)
        elif not stack:
            _log.warning("line %d: #%s without #if", d.line, d.keyword)
        elif d.keyword in ALTERNATIVES:
            region = stack[-1]
            region.branches[-1].body_end = d.start
            region.branches.append(Branch(opener=d, body_start=after(d), region=region))
        else:
            region = stack.pop()
            region.branches[-1].body_end = d.start
            region.endif = d
            regions.append(region)
    for region in stack:
        _log.warning("line %d: unterminated #%s", region.branches[0].opener.line,
                     region.branches[0].opener.keyword)
    regions.sort(key=lambda r: r.start)
    return regions


# ═══════════════════════════════════════════════════════════════════════════
#  PART 3 — THE REMOVER
# ═══════════════════════════════════════════════════════════════════════════

class PreprocessorRemover:
    """
    Inactive-branch and dead-macro removal for one source buffer.

    Parameters
    ----------
    buffer : SourceBuffer
        The analysed file.
    skipped_ranges : sequence of (int, int)
        Line ranges the front end skipped.
    macros_to_keep : iterable of str
        Protected macro names.
    expansions : iterable of MacroExpansion
        Macro expansions recorded by the front end.
    main_file : str
        Path of the analysed file; expansions elsewhere are never removed.
    """

    def __init__(
        self,
        buffer: SourceBuffer,
        skipped_ranges: Sequence[Tuple[int, int]],
        macros_to_keep: Iterable[str] = (),
        expansions: Iterable[MacroExpansion] = (),
        main_file: str = "",
    ) -> None:
        self.buffer = buffer
        self.skipped_ranges = tuple(skipped_ranges)
        self.protected: FrozenSet[str] = frozenset(macros_to_keep)
        self.main_file = main_file
        self.directives = scan_directives(buffer)
        self.regions = build_regions(self.directives, buffer)
        self.macros: Dict[str, MacroRecord] = {}
        self._foreign_usages: Set[str] = set()
        self._expansion_ranges: List[Range] = []
        self._classify()
        self._inactive = sorted(b.body for r in self.regions for b in r.branches if not b.taken)
        self._collect_macros(expansions)
        _log.debug("%d directives, %d conditional constructs, %d macros",
                   len(self.directives), len(self.regions), len(self.macros))

    # ── Analysis ──────────────────────────────────────────────────────

    def _line_skipped(self, line: int) -> bool:
        return any(first <= line < last for first, last in self.skipped_ranges)

    def _classify(self) -> None:
        """Decide taken branches and protected constructs, outer constructs first."""
        for region in self.regions:
            parent = region.parent
            outer_skipped = parent is not None and not parent.taken
            for branch in region.branches:
                branch.taken = not outer_skipped and not self._line_skipped(branch.opener.line)
            region.frozen = bool(region.mentions & self.protected)
            if parent is not None and parent.region.frozen:
                region.frozen = True
        # A protected construct also protects every construct around it.
        for region in reversed(self.regions):
            if region.frozen and region.parent is not None:
                region.parent.region.frozen = True
        for region in self.regions:
            if region.parent is not None and region.parent.region.frozen:
                region.frozen = True

    def in_inactive_code(self, offset: int) -> bool:
        return any(lo <= offset < hi for lo, hi in self._inactive)

    def _collect_macros(self, expansions: Iterable[MacroExpansion]) -> None:
        for d in self.directives:
            if d.kind == "define" and not self.in_inactive_code(d.start):
                record = self.macros.setdefault(d.name, MacroRecord(d.name))
                record.definitions.append(d)
                record.protected = d.name in self.protected

        # Headers included after a definition may test the macro.
        includes = [d.start for d in self.directives
                    if d.kind == "include" and not self.in_inactive_code(d.start)]
        for record in self.macros.values():
            if includes and record.definitions[0].start < includes[-1]:
                self._foreign_usages.add(record.name)

        for exp in expansions:
            if exp.file == self.main_file:
                self._expansion_ranges.append((exp.start, exp.end))
            record = self.macros.get(exp.name)
            if record is None:
                continue
            if exp.file != self.main_file:
                self._foreign_usages.add(exp.name)
            else:
                record.usages.append((exp.start, exp.end))

        for d in self.directives:
            if d.kind != "conditional":
                continue
            for name in d.condition_identifiers:
                record = self.macros.get(name)
                if record is not None:
                    record.usages.append((d.start, d.end))

        for region in self.regions:
            if not region.frozen:
                continue
            for branch in region.branches:
                if branch.taken:
                    continue
                text = self.buffer.code[branch.body_start:branch.body_end]
                for name in identifiers(text) & self.macros.keys():
                    self.macros[name].usages.append(branch.body)

    # ── (a) inactive code ─────────────────────────────────────────────

    def region_deletions(self) -> List[Range]:
        """Ranges action (a) deletes, in source order."""
        ranges: List[Range] = []
        for region in self.regions:
            if region.frozen or region.endif is None:
                continue
            if not region.any_taken:
                ranges.append(self.buffer.expand_to_lines(region.start, region.end))
                continue
            for branch in region.branches:
                if not branch.taken and branch.body_end > branch.body_start:
                    ranges.append(branch.body)
        return ranges

    # ── (b) dead macros ───────────────────────────────────────────────

    def dead_macros(self, rewriter: SmartRewriter, extra: Sequence[Range] = ()) -> Set[str]:
        """
        Names of macros whose definitions can go, given the text already
        scheduled for removal in *rewriter* plus *extra*.
        """

        def removed(lo: int, hi: int) -> bool:
            return rewriter.is_removed(lo, hi) or any(a <= lo and hi <= b for a, b in extra)

        dead: Set[str] = set()
        for name, record in self.macros.items():
            if record.protected or name in self._foreign_usages:
                continue
            if all(removed(lo, hi) for lo, hi in record.usages):
                dead.add(name)

        changed = True
        while changed:
            changed = False
            for name, record in self.macros.items():
                if name in dead:
                    continue
                live_defs = [d for d in record.definitions if not removed(d.start, d.end)]
                if not live_defs:
                    continue
                revived = dead & {w for d in live_defs for w in identifiers(d.body)}
                revived.discard(name)
                if revived:
                    dead -= revived
                    changed = True
        return dead

    def _define_ranges(self, names: Iterable[str]) -> List[Range]:
        ranges: List[Range] = []
        for name in names:
            for d in self.macros[name].definitions:
                ranges.append(self.buffer.expand_to_lines(d.start, d.end))
        return ranges

    # ── Services for the declaration passes ───────────────────────────

    def ignorable_ranges(self, rewriter: SmartRewriter) -> List[Range]:
        """Text that will be gone once this pass runs, as far as is known now."""
        regions = self.region_deletions()
        return regions + self._define_ranges(self.dead_macros(rewriter, regions))

    def safe_to_delete(self, start: int, end: int, rewriter: SmartRewriter) -> bool:
        """
        Whether deleting ``[start, end)`` leaves the directive structure
        intact: no construct is cut, no ``#include`` or ``#undef`` goes,
        and no ``#define`` goes whose macro is still used elsewhere.
        Cutting through a macro expansion is refused as well.
        """
        for lo, hi in self._expansion_ranges:
            if lo < end and hi > start and not (start <= lo and hi <= end):
                return False
        for region in self.regions:
            if region.end <= start or region.start >= end:
                continue
            inside = [start <= d.start < end for d in region.directives]
            if any(inside) and not all(inside):
                return False
        for d in self.directives:
            if not start <= d.start < end:
                continue
            if d.kind in ("include", "undef"):
                return False
            if d.kind == "define":
                record = self.macros.get(d.name)
                if record is None:
                    continue
                if record.protected or d.name in self._foreign_usages:
                    return False
                for lo, hi in record.usages:
                    if not (start <= lo and hi <= end) and not rewriter.is_removed(lo, hi):
                        return False
        return True

    # ── Finalize ──────────────────────────────────────────────────────

    def finalize(self, rewriter: SmartRewriter) -> None:
        regions = self.region_deletions()
        for lo, hi in regions:
            rewriter.remove(lo, hi)
        dead = self.dead_macros(rewriter)
        for lo, hi in self._define_ranges(sorted(dead)):
            rewriter.remove(lo, hi)
        _log.debug("preprocessor: %d inactive ranges, %d dead macros", len(regions), len(dead))
