"""
cxxprune.source_text
====================

Offset-level helpers over the main file's text shared by the removal
passes: comment masking, range widening to whole lines, brace lookup and
"is this stretch of text ignorable" checks.

All offsets are indices into the latin-1 decoded buffer, which makes them
equal to the front end's byte offsets.
"""

from __future__ import annotations

import re
from typing import Iterable, List, Optional, Sequence, Tuple

Range = Tuple[int, int]

# Literals are matched first so that comment markers inside them survive.
_COMMENT_RE = re.compile(
    r'''("(?:\\.|[^"\\\n])*"|'(?:\\.|[^'\\\n])*')'''
    r'''|(/\*.*?\*/|//(?:\\\n|[^\n])*)''',
    re.DOTALL,
)


def _blank_comment(match: "re.Match[str]") -> str:
    if match.group(1) is not None:
        return match.group(1)
    return re.sub(r"[^\n]", " ", match.group(2))


def mask_comments(text: str) -> str:
    """Return *text* with every comment replaced by spaces (newlines kept)."""
    return _COMMENT_RE.sub(_blank_comment, text)


def subtract_ranges(start: int, end: int, covered: Iterable[Range]) -> List[Range]:
    """The parts of ``[start, end)`` not covered by any range in *covered*."""
    pieces: List[Range] = []
    cursor = start
    for lo, hi in sorted(covered):
        if hi <= cursor or lo >= end:
            continue
        if lo > cursor:
            pieces.append((cursor, lo))
        cursor = max(cursor, hi)
        if cursor >= end:
            break
    if cursor < end:
        pieces.append((cursor, end))
    return pieces


class SourceBuffer:
    """The analysed file's text plus a comment-masked copy of it."""

    def __init__(self, text: str) -> None:
        self.text = text
        self.code = mask_comments(text)
        self._line_starts: List[int] = [0]
        for m in re.finditer(r"\n", text):
            self._line_starts.append(m.end())

    def __len__(self) -> int:
        return len(self.text)

    # ── Lines ─────────────────────────────────────────────────────────

    def line_of(self, offset: int) -> int:
        """1-based line number containing *offset*."""
        lo, hi = 0, len(self._line_starts)
        while lo + 1 < hi:
            mid = (lo + hi) // 2
            if self._line_starts[mid] <= offset:
                lo = mid
            else:
                hi = mid
        return lo + 1

    def line_start(self, line: int) -> int:
        return self._line_starts[line - 1]

    # ── Range widening ────────────────────────────────────────────────

    def extend_to_semicolon(self, end: int) -> int:
        """Include a ``;`` that follows *end* after optional whitespace."""
        i = end
        while i < len(self.code) and self.code[i] in " \t\r\n":
            i += 1
        if i < len(self.code) and self.code[i] == ";":
            return i + 1
        return end

    def expand_to_lines(self, start: int, end: int) -> Range:
        """
        Widen ``[start, end)`` over surrounding blanks so that deleting it
        does not leave an empty line behind.

        The indentation before *start* is taken only when nothing else
        precedes it on the line; the line break after *end* is taken only
        when the whole line goes away.
        """
        text = self.text
        j = start
        while j > 0 and text[j - 1] in " \t":
            j -= 1
        at_line_start = j == 0 or text[j - 1] == "\n"
        k = end
        while k < len(text) and text[k] in " \t\r":
            k += 1
        at_line_end = k == len(text) or text[k] == "\n"
        if at_line_start and at_line_end:
            return j, min(k + 1, len(text))
        if at_line_end:
            return start, end
        if at_line_start:
            return j, k
        return start, end

    def extend_over_attributes(self, start: int) -> int:
        """Move *start* back over ``[[...]]`` attribute lists written before it."""
        code = self.code
        while True:
            i = start
            while i > 0 and code[i - 1] in " \t\r\n":
                i -= 1
            if not code.endswith("]]", 0, i):
                return start
            opener = code.rfind("[[", 0, i - 2)
            if opener == -1:
                return start
            start = opener

    # ── Structure ─────────────────────────────────────────────────────

    def find_forward(self, char: str, start: int, limit: Optional[int] = None) -> int:
        """Offset of the next *char* in code (comments ignored), or -1."""
        limit = len(self.code) if limit is None else limit
        return self.code.find(char, start, limit)

    def is_blank(self, start: int, end: int, covered: Sequence[Range] = ()) -> bool:
        """
        True if ``[start, end)`` contains nothing but whitespace and comments
        once the *covered* ranges are discounted.
        """
        for lo, hi in subtract_ranges(start, end, covered):
            if self.code[lo:hi].strip():
                return False
        return True

    def has_word(self, start: int, end: int, word: str) -> bool:
        return re.search(rf"\b{re.escape(word)}\b", self.code[start:end]) is not None
