# cxxprune/errors.py
"""
Error Types for the cxxprune Optimizer

Architecture Overview:
─────────────────────
┌─────────────────────────────────────────────────────────────────────────────┐
│                          Error Hierarchy                                    │
├─────────────────────────────────────────────────────────────────────────────┤
│  PruneError (base)                                                          │
│  ├── FrontEndFailure        - the C++ front end reported errors             │
│  └── InternalInconsistency  - optimizer bugs (should never happen)          │
│      ├── EditConflict       - two passes disagree on edit boundaries        │
│      ├── MissingFrontEndService - front end lacks a required capability     │
│      └── GraphFrozenError   - requires graph mutated after collection       │
└─────────────────────────────────────────────────────────────────────────────┘

I/O failures are not wrapped: ``OSError`` propagates to the caller unchanged.

Error Codes:
────────────
Each error carries a code following the pattern PRUNE-XXXX:
  - 1000-1999: front-end errors (bad input)
  - 9000-9999: internal consistency errors (bugs)

Example Usage:
──────────────
    from cxxprune.errors import FrontEndFailure

    try:
        text = optimize("solution.cpp", ["-std=c++17"], [], [])
    except FrontEndFailure as exc:
        for diag in exc.diagnostics:
            print(diag)
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, unique
from typing import Iterable, List, Optional, Tuple


# ═══════════════════════════════════════════════════════════════════════════════
# ERROR CODES
# ═══════════════════════════════════════════════════════════════════════════════

@unique
class ErrorCode(Enum):
    """Stable identifiers for every failure the optimizer can raise."""

    FRONT_END_ERROR = "PRUNE-1001"

    INTERNAL = "PRUNE-9000"
    EDIT_CONFLICT = "PRUNE-9001"
    MISSING_SERVICE = "PRUNE-9002"
    GRAPH_FROZEN = "PRUNE-9003"

    @property
    def is_internal(self) -> bool:
        return self.value.startswith("PRUNE-9")


# ═══════════════════════════════════════════════════════════════════════════════
# FRONT-END DIAGNOSTICS
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Diagnostic:
    """
    One diagnostic reported by the front end, with its location resolved
    eagerly so it stays printable after the translation unit is released.
    """
    severity: int
    message: str
    file: str = ""
    line: int = 0
    column: int = 0

    def __str__(self) -> str:
        if self.file:
            return f"{self.file}:{self.line}:{self.column}: {self.message}"
        return self.message


# ═══════════════════════════════════════════════════════════════════════════════
# EXCEPTION HIERARCHY
# ═══════════════════════════════════════════════════════════════════════════════

class PruneError(Exception):
    """Base class of every error raised by cxxprune."""

    code: ErrorCode = ErrorCode.INTERNAL

    def __init__(self, message: str, code: Optional[ErrorCode] = None) -> None:
        if code is not None:
            self.code = code
        self.message = message
        super().__init__(f"[{self.code.value}] {message}")


class FrontEndFailure(PruneError):
    """
    The front end reported at least one error-severity diagnostic.

    The run is aborted before any edit is computed; every error diagnostic
    is attached and concatenated into the message.
    """

    code = ErrorCode.FRONT_END_ERROR

    def __init__(self, diagnostics: Iterable[Diagnostic]) -> None:
        self.diagnostics: Tuple[Diagnostic, ...] = tuple(diagnostics)
        message = "Optimizer failed."
        if self.diagnostics:
            lines: List[str] = [str(d) for d in self.diagnostics]
            message += (" The following compilation errors were detected:\n"
                        + "\n".join(lines))
        super().__init__(message)


class InternalInconsistency(PruneError):
    """A broken invariant inside the optimizer. Signals a bug, not bad input."""

    code = ErrorCode.INTERNAL


class EditConflict(InternalInconsistency):
    """Two edits partially overlap (neither contains the other)."""

    code = ErrorCode.EDIT_CONFLICT

    def __init__(self, new: Tuple[int, int], existing: Tuple[int, int]) -> None:
        self.new = new
        self.existing = existing
        super().__init__(
            f"edit [{new[0]}, {new[1]}) partially overlaps "
            f"registered edit [{existing[0]}, {existing[1]})"
        )


class MissingFrontEndService(InternalInconsistency):
    """The front end does not provide a capability the optimizer needs."""

    code = ErrorCode.MISSING_SERVICE


class GraphFrozenError(InternalInconsistency):
    """The requires graph was mutated after collection finished."""

    code = ErrorCode.GRAPH_FROZEN
