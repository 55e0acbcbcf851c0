"""
cxxprune.frontend
=================

The C++ front end as seen by the optimizer, and its libclang implementation.

The optimizer needs five capabilities from a front end:

    ┌───────────────────────────────────────────────────────────────────┐
    │  parse              semantically analysed tree of one source file │
    │  locations          cursor → byte range / file / line             │
    │  diagnostics        everything the front end reported             │
    │  deferred bodies    a way to force late-parsed template bodies    │
    │  preprocessor       skipped conditional ranges, macro expansions  │
    └───────────────────────────────────────────────────────────────────┘

``FrontEnd`` is the abstract capability; ``LibClangFrontEnd`` provides it on
top of the ``clang.cindex`` bindings.  A few libclang entry points the
bindings do not wrap (skipped ranges, specialized-template lookup,
overloaded-declaration candidates) are bound here through the bindings' own
ctypes library handle.

Tree traversal is exposed as :func:`traverse`, an explicit-stack walk with
enter/leave hooks, so deeply nested expressions cannot exhaust the Python
recursion limit.
"""

from __future__ import annotations

import ctypes
import logging
import os
from dataclasses import dataclass, field
from typing import (
    Callable,
    Dict,
    Iterator,
    List,
    NamedTuple,
    Optional,
    Protocol,
    Sequence,
    Tuple,
)

from clang import cindex

from .config import DELAYED_PARSING_OFF, OptimizerConfig
from .errors import Diagnostic, FrontEndFailure, MissingFrontEndService

_log = logging.getLogger(__name__)

ERROR_SEVERITY = 3          # CXDiagnostic_Error; Fatal is 4


def normalize_path(path: str) -> str:
    return os.path.normcase(os.path.abspath(path))


# ═══════════════════════════════════════════════════════════════════════════
#  PART 1 — DATA HANDED TO THE OPTIMIZER
# ═══════════════════════════════════════════════════════════════════════════

class MacroExpansion(NamedTuple):
    """One macro expansion (or macro reference in a directive) seen by the front end."""
    name: str
    file: str
    start: int
    end: int


@dataclass
class ParsedUnit:
    """
    A parsed translation unit plus everything gathered while lexing it.

    Attributes
    ----------
    tu : cindex.TranslationUnit
        The libclang translation unit (owns every cursor handed out).
    main_file : str
        Normalised path of the analysed file.
    source : bytes
        Raw contents of the analysed file.
    diagnostics : list of Diagnostic
        All diagnostics, locations resolved eagerly.
    skipped_ranges : tuple of (int, int)
        ``(first line, last line)`` of every range of the main file the
        preprocessor skipped.  A skipped range starts at the opener of a
        branch that was not taken and ends on the directive that stopped
        the skipping.
    macro_expansions : list of MacroExpansion
        Every recorded macro expansion, in any file.
    """
    tu: "cindex.TranslationUnit"
    main_file: str
    source: bytes
    diagnostics: List[Diagnostic] = field(default_factory=list)
    skipped_ranges: Tuple[Tuple[int, int], ...] = ()
    macro_expansions: List[MacroExpansion] = field(default_factory=list)
    _file_cache: Dict[str, str] = field(default_factory=dict, repr=False)

    @property
    def root(self) -> "cindex.Cursor":
        return self.tu.cursor

    def errors(self) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.severity >= ERROR_SEVERITY]

    def file_of(self, cursor: "cindex.Cursor") -> str:
        f = cursor.location.file
        if f is None:
            return ""
        name = f.name
        norm = self._file_cache.get(name)
        if norm is None:
            norm = normalize_path(name)
            self._file_cache[name] = norm
        return norm

    def is_main(self, cursor: "cindex.Cursor") -> bool:
        return self.file_of(cursor) == self.main_file


# ═══════════════════════════════════════════════════════════════════════════
#  PART 2 — THE CAPABILITY
# ═══════════════════════════════════════════════════════════════════════════

class FrontEnd(Protocol):
    """What the optimizer requires from a C++ front end."""

    def parse(self, path: str, config: OptimizerConfig) -> ParsedUnit:
        ...

    def force_deferred_bodies(self, unit: ParsedUnit, config: OptimizerConfig) -> ParsedUnit:
        ...


def traverse(
    root: "cindex.Cursor",
    enter: Callable[["cindex.Cursor"], bool],
    leave: Optional[Callable[["cindex.Cursor"], None]] = None,
) -> None:
    """
    Walk the descendants of *root* depth-first.

    ``enter(cursor)`` is called for every visited cursor and returns whether
    to descend into its children; ``leave(cursor)`` is called once the
    cursor (and its children, if visited) is done.  *root* itself is
    neither entered nor left.
    """
    stack: List[Tuple["cindex.Cursor", Iterator["cindex.Cursor"]]] = [
        (root, iter(root.get_children()))
    ]
    while stack:
        parent, children = stack[-1]
        child = next(children, None)
        if child is None:
            stack.pop()
            if leave is not None and stack:
                leave(parent)
            continue
        if enter(child):
            stack.append((child, iter(child.get_children())))
        elif leave is not None:
            leave(child)


def extent_of(cursor: "cindex.Cursor") -> Tuple[int, int]:
    ext = cursor.extent
    return ext.start.offset, ext.end.offset


# ═══════════════════════════════════════════════════════════════════════════
#  PART 3 — LIBCLANG ENTRY POINTS NOT WRAPPED BY THE BINDINGS
# ═══════════════════════════════════════════════════════════════════════════

class _SourceRangeList(ctypes.Structure):
    _fields_ = [
        ("count", ctypes.c_uint),
        ("ranges", ctypes.POINTER(cindex.SourceRange)),
    ]


_BOUND: Dict[str, object] = {}


def _lib_function(name: str, argtypes: list, restype):
    fn = _BOUND.get(name)
    if fn is None:
        try:
            fn = getattr(cindex.conf.lib, name)
        except AttributeError as exc:
            raise MissingFrontEndService(f"libclang does not export {name}") from exc
        fn.argtypes = argtypes
        fn.restype = restype
        _BOUND[name] = fn
    return fn


def _wrap_cursor(result: Optional["cindex.Cursor"], origin: "cindex.Cursor"):
    if result is None or result == cindex.conf.lib.clang_getNullCursor():
        return None
    result._tu = origin._tu
    return result


def specialized_template(cursor: "cindex.Cursor") -> Optional["cindex.Cursor"]:
    """The template *cursor* specializes or was instantiated from, if any."""
    fn = _lib_function("clang_getSpecializedCursorTemplate",
                       [cindex.Cursor], cindex.Cursor)
    return _wrap_cursor(fn(cursor), cursor)


def overloaded_decls(cursor: "cindex.Cursor") -> List["cindex.Cursor"]:
    """Candidate declarations of an overloaded-declaration reference."""
    count_fn = _lib_function("clang_getNumOverloadedDecls",
                             [cindex.Cursor], ctypes.c_uint)
    get_fn = _lib_function("clang_getOverloadedDecl",
                           [cindex.Cursor, ctypes.c_uint], cindex.Cursor)
    found = []
    for i in range(count_fn(cursor)):
        decl = _wrap_cursor(get_fn(cursor, i), cursor)
        if decl is not None:
            found.append(decl)
    return found


def _skipped_ranges(tu: "cindex.TranslationUnit", path: str) -> Tuple[Tuple[int, int], ...]:
    get_fn = _lib_function("clang_getSkippedRanges",
                           [cindex.TranslationUnit, cindex.File],
                           ctypes.POINTER(_SourceRangeList))
    dispose_fn = _lib_function("clang_disposeSourceRangeList",
                               [ctypes.POINTER(_SourceRangeList)], None)

    ranges = get_fn(tu, tu.get_file(path))
    if not ranges:
        return ()
    try:
        listing = ranges.contents
        found = []
        for i in range(listing.count):
            rng = listing.ranges[i]
            found.append((rng.start.line, rng.end.line))
        return tuple(sorted(found))
    finally:
        dispose_fn(ranges)


# ═══════════════════════════════════════════════════════════════════════════
#  PART 4 — LIBCLANG FRONT END
# ═══════════════════════════════════════════════════════════════════════════

class LibClangFrontEnd:
    """``FrontEnd`` implementation on ``clang.cindex``."""

    PARSE_OPTIONS = cindex.TranslationUnit.PARSE_DETAILED_PROCESSING_RECORD

    def __init__(self, libclang_path: Optional[str] = None) -> None:
        if libclang_path and not cindex.Config.loaded:
            cindex.Config.set_library_file(libclang_path)

    def parse(self, path: str, config: OptimizerConfig) -> ParsedUnit:
        return self._parse(path, config.front_end_flags())

    def force_deferred_bodies(self, unit: ParsedUnit, config: OptimizerConfig) -> ParsedUnit:
        """
        Re-parse with eager template parsing when bodies were deferred.

        Late-parsed template bodies are incomplete (no references, truncated
        source ranges).  Diagnostics of the forced parse are dropped: bodies
        of templates that are never instantiated may well be malformed.
        """
        if not config.delayed_template_parsing():
            return unit
        flags = config.front_end_flags() + [DELAYED_PARSING_OFF]
        try:
            forced = self._parse(unit.main_file, flags)
        except FrontEndFailure:
            _log.warning("forced template parsing failed; keeping deferred bodies")
            return unit
        forced.diagnostics = list(unit.diagnostics)
        return forced

    def _parse(self, path: str, flags: Sequence[str]) -> ParsedUnit:
        main_file = normalize_path(path)
        with open(main_file, "rb") as fh:
            source = fh.read()
        _log.debug("parsing %s with %s", main_file, " ".join(flags))
        index = cindex.Index.create()
        try:
            tu = index.parse(main_file, args=list(flags), options=self.PARSE_OPTIONS)
        except cindex.TranslationUnitLoadError as exc:
            raise FrontEndFailure([
                Diagnostic(severity=4, message=f"cannot parse {main_file}: {exc}")
            ]) from exc

        unit = ParsedUnit(tu=tu, main_file=main_file, source=source)
        unit.diagnostics = [self._convert(d) for d in tu.diagnostics]
        unit.skipped_ranges = _skipped_ranges(tu, main_file)
        for cursor in tu.cursor.get_children():
            if cursor.kind == cindex.CursorKind.MACRO_INSTANTIATION:
                start, end = extent_of(cursor)
                unit.macro_expansions.append(
                    MacroExpansion(cursor.spelling, unit.file_of(cursor), start, end))
        _log.debug("%d diagnostics, %d skipped ranges, %d macro expansions",
                   len(unit.diagnostics), len(unit.skipped_ranges),
                   len(unit.macro_expansions))
        return unit

    @staticmethod
    def _convert(diag: "cindex.Diagnostic") -> Diagnostic:
        loc = diag.location
        return Diagnostic(
            severity=diag.severity,
            message=diag.spelling,
            file=loc.file.name if loc.file is not None else "",
            line=loc.line,
            column=loc.column,
        )
