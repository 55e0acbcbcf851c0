"""
cxxprune
========

Whole-program dead-code elimination for a single C++ translation unit.

Given one source file (typically every header of a program pasted into a
single file), keep only the declarations the entry point can reach, join
the namespace blocks left behind, and strip dead conditional code and
macros.  The result is one rewritten source text.

    >>> from cxxprune import optimize
    >>> text = optimize("merged.cpp", ["-std=c++17"])

The C++ front end is libclang, through the ``clang.cindex`` bindings.
"""

__version__ = "0.3.0"

from .config import OptimizerConfig
from .errors import (
    EditConflict,
    FrontEndFailure,
    InternalInconsistency,
    PruneError,
)
from .optimizer import Optimizer, optimize

__all__ = [
    "__version__",
    "EditConflict",
    "FrontEndFailure",
    "InternalInconsistency",
    "Optimizer",
    "OptimizerConfig",
    "PruneError",
    "optimize",
]
