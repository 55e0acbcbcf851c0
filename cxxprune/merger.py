"""
cxxprune.merger
===============

Namespace/Scope Merger.

Once dead declarations are gone, a file produced by pasting headers together
tends to be full of reopenings of the same namespace::

    namespace util {            namespace util {
    int a();                    int a();
    }                     →     int b();
    namespace util {            }
    int b();
    }

Consecutive live blocks of the same namespace (same name, same ``inline``
flag) that are separated only by ignorable text are joined by deleting the
text from the first block's closing brace through the second block's
opening brace.  The children of joined blocks are then treated as one
sibling list, so nested reopenings collapse as well.  Live namespaces that
never had children and whose body is blank are dropped.

Liveness comes from the context's removed set: blocks the declaration
remover already deleted (and everything inside them) are not revisited, and
shells dropped here are added to it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List, Optional

from clang import cindex

from .decl_index import LexicalKey, is_scope_block, lexical_key
from .frontend import extent_of
from .source_text import Range

if TYPE_CHECKING:
    from .optimizer import OptimizerContext

_log = logging.getLogger(__name__)


@dataclass(eq=False)
class NamespaceBlock:
    """One live ``namespace name { … }`` block."""
    key: LexicalKey
    name: str
    inline: bool
    start: int
    end: int
    open_brace: int
    close_brace: int
    has_children: bool
    children: List["NamespaceBlock"] = field(default_factory=list)


class NamespaceMerger:
    """Joins namespace reopenings and drops empty shells."""

    def __init__(self, ctx: "OptimizerContext") -> None:
        self.ctx = ctx
        self.buffer = ctx.buffer
        self.rewriter = ctx.rewriter
        self._ignorable: List[Range] = []
        self.joined = 0
        self.dropped = 0

    def run(self) -> None:
        self._ignorable = self.ctx.preprocessor.ignorable_ranges(self.rewriter)
        self._merge_siblings(self._live_blocks(self.ctx.unit.root))
        _log.debug("namespace merger: %d reopenings joined, %d empty blocks dropped",
                   self.joined, self.dropped)

    # ── Live structure ────────────────────────────────────────────────

    def _live_blocks(self, container: "cindex.Cursor") -> List[NamespaceBlock]:
        blocks: List[NamespaceBlock] = []
        for child in container.get_children():
            if not self.ctx.unit.is_main(child):
                continue
            if child.kind == cindex.CursorKind.NAMESPACE:
                block = self._block(child)
                if block is not None:
                    blocks.append(block)
            elif is_scope_block(child, self.buffer) and lexical_key(child) not in self.ctx.removed:
                # extern "C++" { … } is a barrier; its contents merge among themselves.
                self._merge_siblings(self._live_blocks(child))
        return blocks

    def _block(self, cursor: "cindex.Cursor") -> Optional[NamespaceBlock]:
        key = lexical_key(cursor)
        if key in self.ctx.removed:
            return None
        start, end, _ = key
        children = [c for c in cursor.get_children() if self.ctx.unit.is_main(c)]
        limit = extent_of(children[0])[0] if children else end
        opener = self.buffer.find_forward("{", start, limit)
        if opener == -1 or self.buffer.code[end - 1:end] != "}":
            return None
        return NamespaceBlock(
            key=key,
            name=cursor.spelling,
            inline=self.buffer.has_word(start, opener, "inline"),
            start=start,
            end=end,
            open_brace=opener,
            close_brace=end - 1,
            has_children=bool(children),
            children=self._live_blocks(cursor),
        )

    # ── Merging ───────────────────────────────────────────────────────

    def _covered(self) -> List[Range]:
        return self.rewriter.removed_ranges() + self._ignorable

    def _merge_siblings(self, blocks: List[NamespaceBlock]) -> None:
        survivors: List[NamespaceBlock] = []
        for block in blocks:
            if (not block.has_children
                    and self.buffer.is_blank(block.open_brace + 1, block.close_brace,
                                             self._covered())
                    and self._delete(block.start, block.end)):
                self.ctx.removed.add(block.key)
                self.dropped += 1
                continue
            if survivors and self._joinable(survivors[-1], block) and self._join(survivors[-1], block):
                continue
            survivors.append(block)
        for block in survivors:
            self._merge_siblings(block.children)

    def _joinable(self, first: NamespaceBlock, second: NamespaceBlock) -> bool:
        return (first.name == second.name and first.inline == second.inline
                and self.buffer.is_blank(first.end, second.start, self._covered()))

    def _join(self, first: NamespaceBlock, second: NamespaceBlock) -> bool:
        if not self._delete(first.close_brace, second.open_brace + 1):
            return False
        first.close_brace = second.close_brace
        first.end = second.end
        first.has_children = first.has_children or second.has_children
        first.children.extend(second.children)
        self.joined += 1
        return True

    def _delete(self, start: int, end: int) -> bool:
        lo, hi = self.buffer.expand_to_lines(start, end)
        if not self.ctx.preprocessor.safe_to_delete(lo, hi, self.rewriter):
            return False
        return self.rewriter.remove(lo, hi)
