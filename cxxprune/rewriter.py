"""
cxxprune.rewriter
=================

Text Rewrite Engine: accumulates edits from independent passes and applies
them to the source buffer in one deterministic step.

Edit-set invariant
------------------
Registered edits never partially overlap.  When a pass registers a new edit:

    ┌──────────────────────────────────────────────┬──────────────────────────┐
    │ relation to a registered edit                │ outcome                  │
    ├──────────────────────────────────────────────┼──────────────────────────┤
    │ nested inside (or equal to) a deletion       │ no-op, returns False     │
    │ new deletion contains registered edits       │ they are absorbed        │
    │ partial overlap                              │ EditConflict (fatal)     │
    └──────────────────────────────────────────────┴──────────────────────────┘

Passes are allowed to schedule deletions over text an earlier pass already
removed; they are never allowed to disagree on boundaries.

Typical usage::

    rw = SmartRewriter(text)
    rw.remove(10, 20)
    rw.remove(12, 15)            # nested: ignored
    assert rw.is_removed(12, 15)
    result = rw.apply()
"""

from __future__ import annotations

import bisect
import logging
from typing import Iterator, List, NamedTuple, Tuple

from .errors import EditConflict, InternalInconsistency

_log = logging.getLogger(__name__)


class Edit(NamedTuple):
    """A scheduled ``[start, end)`` rewrite; empty replacement means delete."""
    start: int
    end: int
    replacement: str = ""

    @property
    def is_deletion(self) -> bool:
        return not self.replacement

    def contains(self, start: int, end: int) -> bool:
        return self.start <= start and end <= self.end

    def __repr__(self) -> str:
        if self.is_deletion:
            return f"Edit(delete [{self.start}, {self.end}))"
        return f"Edit(replace [{self.start}, {self.end}) -> {self.replacement!r})"


class SmartRewriter:
    """
    Conflict-checked edit accumulator over one source buffer.

    Edits are kept sorted by start offset; because they never partially
    overlap, the sort order is also the order of their end offsets.
    """

    def __init__(self, text: str) -> None:
        self._text = text
        self._edits: List[Edit] = []
        self._starts: List[int] = []
        self._applied = False

    # ── Registration ──────────────────────────────────────────────────

    def remove(self, start: int, end: int) -> bool:
        """Schedule deletion of ``[start, end)``; False if already covered."""
        return self._register(Edit(start, end))

    def replace(self, start: int, end: int, replacement: str) -> bool:
        """Schedule replacement of ``[start, end)`` with *replacement*."""
        if not replacement:
            return self.remove(start, end)
        return self._register(Edit(start, end, replacement))

    def _register(self, edit: Edit) -> bool:
        if self._applied:
            raise InternalInconsistency("edit registered after the rewrite was applied")
        if not 0 <= edit.start <= edit.end <= len(self._text):
            raise InternalInconsistency(
                f"edit [{edit.start}, {edit.end}) outside buffer of {len(self._text)} chars")
        if edit.start == edit.end and edit.is_deletion:
            return False

        absorbed: List[int] = []
        for idx in self._overlapping(edit.start, edit.end):
            old = self._edits[idx]
            if old.contains(edit.start, edit.end):
                if old.is_deletion or old == edit:
                    return False
                raise EditConflict((edit.start, edit.end), (old.start, old.end))
            if edit.contains(old.start, old.end) and edit.is_deletion:
                absorbed.append(idx)
                continue
            raise EditConflict((edit.start, edit.end), (old.start, old.end))

        for idx in reversed(absorbed):
            del self._edits[idx]
            del self._starts[idx]
        pos = bisect.bisect_left(self._starts, edit.start)
        self._edits.insert(pos, edit)
        self._starts.insert(pos, edit.start)
        return True

    def _overlapping(self, start: int, end: int) -> List[int]:
        """Indices of edits sharing at least one character with ``[start, end)``."""
        found: List[int] = []
        # Edits are disjoint, so at most one edit starting before *start*
        # can reach into the range.
        idx = max(bisect.bisect_right(self._starts, start) - 1, 0)
        while idx < len(self._edits):
            old = self._edits[idx]
            if old.start >= end and not (old.start == end == start):
                break
            if old.end > start or (old.start == old.end == start):
                found.append(idx)
            idx += 1
        return found

    # ── Queries ───────────────────────────────────────────────────────

    @property
    def text(self) -> str:
        return self._text

    def __len__(self) -> int:
        return len(self._edits)

    def __iter__(self) -> Iterator[Edit]:
        return iter(list(self._edits))

    def is_removed(self, start: int, end: int) -> bool:
        """True if ``[start, end)`` lies inside a single registered deletion."""
        idx = bisect.bisect_right(self._starts, start) - 1
        if idx < 0:
            return False
        old = self._edits[idx]
        return old.is_deletion and old.contains(start, end)

    def removed_ranges(self) -> List[Tuple[int, int]]:
        return [(e.start, e.end) for e in self._edits if e.is_deletion]

    # ── Application ───────────────────────────────────────────────────

    def apply(self) -> str:
        """Produce the rewritten buffer; may be called exactly once."""
        if self._applied:
            raise InternalInconsistency("rewrite applied twice")
        self._applied = True
        if not self._edits:
            return self._text

        pieces: List[str] = []
        cursor = 0
        for edit in self._edits:
            if edit.start < cursor:
                raise InternalInconsistency(f"unsorted edit set at {edit!r}")
            pieces.append(self._text[cursor:edit.start])
            pieces.append(edit.replacement)
            cursor = edit.end
        pieces.append(self._text[cursor:])
        _log.debug("applied %d edits", len(self._edits))
        return "".join(pieces)
