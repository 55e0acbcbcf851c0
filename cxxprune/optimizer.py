"""
cxxprune.optimizer
==================

Orchestrator: drives the front end and the passes, in a fixed order, over
one ``OptimizerContext``.

    ┌──────────────┐   ┌────────────┐   ┌───────────┐   ┌──────────────┐
    │  front end   │──▶│ decl index │──▶│ collector │──▶│ reachability │
    └──────────────┘   └────────────┘   └───────────┘   └──────┬───────┘
                                                               │
    ┌──────────────┐   ┌────────────┐   ┌───────────┐   ┌──────▼───────┐
    │   rewriter   │◀──│preprocessor│◀──│  merger   │◀──│   remover    │
    │   (apply)    │   │ (finalize) │   │           │   │ (+finalize)  │
    └──────────────┘   └────────────┘   └───────────┘   └──────────────┘

Every pass only registers edits; the rewriter applies them once at the end.
A front-end error aborts the run before any pass starts, so no partial
output is ever produced.

Usage::

    from cxxprune import optimize
    text = optimize("merged.cpp", ["-std=c++17"], macros_to_keep=["ONLINE_JUDGE"])
"""

from __future__ import annotations

import contextlib
import logging
import time
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, Iterator, List, Optional, Set

from .collector import DependencyCollector
from .config import OptimizerConfig
from .decl_index import DeclIndex, LexicalKey
from .dependency_graph import DeclKey, RequiresGraph, compute_used
from .errors import FrontEndFailure
from .frontend import FrontEnd, LibClangFrontEnd, ParsedUnit
from .merger import NamespaceMerger
from .preprocessor import PreprocessorRemover
from .remover import LexicalRemover
from .rewriter import SmartRewriter
from .source_text import SourceBuffer

_log = logging.getLogger(__name__)

SOURCE_ENCODING = "latin-1"


@contextlib.contextmanager
def phase_timer(name: str) -> Iterator[None]:
    """Log the wall time of one pipeline phase at DEBUG."""
    t0 = time.monotonic()
    try:
        yield
    finally:
        _log.debug("%-14s %.3fs", name, time.monotonic() - t0)


@dataclass
class OptimizerContext:
    """
    State of one optimizer invocation, threaded through the passes.

    Fields after ``rewriter`` are filled in as the phases run.
    """
    config: OptimizerConfig
    unit: ParsedUnit
    buffer: SourceBuffer
    rewriter: SmartRewriter
    index: Optional[DeclIndex] = None
    graph: Optional[RequiresGraph] = None
    ref_sites: Dict[DeclKey, List[int]] = field(default_factory=dict)
    used: FrozenSet[DeclKey] = frozenset()
    preprocessor: Optional[PreprocessorRemover] = None
    # Lexical keys of deleted declarations and scope blocks.
    removed: Set[LexicalKey] = field(default_factory=set)


class Optimizer:
    """
    Whole-program dead-code eliminator for one translation unit.

    Parameters
    ----------
    config : OptimizerConfig
        Flags, protected macros and identifiers.
    front_end : FrontEnd, optional
        Defaults to a ``LibClangFrontEnd`` honouring ``config.libclang_path``.
    """

    def __init__(self, config: OptimizerConfig, front_end: Optional[FrontEnd] = None) -> None:
        self.config = config
        self.front_end = front_end or LibClangFrontEnd(config.libclang_path)

    def run(self, path: str) -> str:
        with phase_timer("parse"):
            unit = self.front_end.parse(path, self.config)
        errors = unit.errors()
        if errors:
            raise FrontEndFailure(errors)
        with phase_timer("deferred"):
            unit = self.front_end.force_deferred_bodies(unit, self.config)

        text = unit.source.decode(SOURCE_ENCODING)
        buffer = SourceBuffer(text)
        ctx = OptimizerContext(config=self.config, unit=unit, buffer=buffer,
                               rewriter=SmartRewriter(text))

        with phase_timer("index"):
            ctx.index = DeclIndex(unit, buffer).build()
        with phase_timer("collect"):
            collector = DependencyCollector(unit, ctx.index, self.config)
            ctx.graph = collector.collect()
            ctx.ref_sites = dict(collector.ref_sites)
        with phase_timer("reachability"):
            ctx.used = compute_used(ctx.graph)

        ctx.preprocessor = PreprocessorRemover(
            buffer,
            unit.skipped_ranges,
            macros_to_keep=self.config.macros_to_keep,
            expansions=list(unit.macro_expansions) + collector.macro_expansions,
            main_file=unit.main_file,
        )

        with phase_timer("remove"):
            remover = LexicalRemover(ctx)
            remover.run()
            remover.finalize()
        with phase_timer("merge"):
            NamespaceMerger(ctx).run()
        with phase_timer("preprocessor"):
            ctx.preprocessor.finalize(ctx.rewriter)
        with phase_timer("rewrite"):
            result = ctx.rewriter.apply()

        _log.info("%s: %d edits, %d of %d bytes kept",
                  unit.main_file, len(ctx.rewriter), len(result), len(text))
        return result.encode(SOURCE_ENCODING).decode("utf-8", "surrogateescape")


def optimize(
    path: str,
    flags: Iterable[str] = (),
    macros_to_keep: Iterable[str] = (),
    identifiers_to_keep: Iterable[str] = (),
    front_end: Optional[FrontEnd] = None,
) -> str:
    """
    Remove every declaration of *path* that the entry point cannot reach.

    Parameters
    ----------
    path : str
        Source file to optimize.
    flags : iterable of str
        Front-end command line.
    macros_to_keep : iterable of str
        Macros whose definitions and conditional blocks stay.
    identifiers_to_keep : iterable of str
        Declaration names to keep in addition to the entry point.

    Returns
    -------
    str
        The rewritten source.

    Raises
    ------
    FrontEndFailure
        The front end reported errors; no output is produced.
    OSError
        The source file could not be read.
    """
    config = OptimizerConfig.create(flags, macros_to_keep, identifiers_to_keep)
    return Optimizer(config, front_end).run(path)
