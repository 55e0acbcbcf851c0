# tests/test_source_text.py
"""Tests for the offset helpers shared by the removal passes."""

from cxxprune.source_text import SourceBuffer, mask_comments, subtract_ranges

from tests.conftest import span


class TestMaskComments:

    def test_line_and_block_comments(self):
        text = "int a; // tail\nint b; /* x\ny */ int c;"
        masked = mask_comments(text)
        assert len(masked) == len(text)
        assert "tail" not in masked
        assert "y */" not in masked
        assert masked.count("\n") == 2
        assert masked.endswith(" int c;")

    def test_markers_inside_literals_survive(self):
        text = 'const char* s = "http://x"; char c = \'/\';'
        assert mask_comments(text) == text

    def test_continued_line_comment(self):
        text = "// one \\\ntwo\nint a;"
        masked = mask_comments(text)
        assert "two" not in masked
        assert masked.endswith("\nint a;")


class TestSubtractRanges:

    def test_gaps(self):
        assert subtract_ranges(0, 10, [(6, 8), (2, 4)]) == [(0, 2), (4, 6), (8, 10)]

    def test_fully_covered(self):
        assert subtract_ranges(0, 10, [(0, 10)]) == []

    def test_overlapping_covers(self):
        assert subtract_ranges(0, 10, [(2, 6), (4, 8)]) == [(0, 2), (8, 10)]

    def test_outside_ranges_ignored(self):
        assert subtract_ranges(5, 10, [(0, 3), (12, 20)]) == [(5, 10)]


class TestLines:

    def test_line_of(self):
        buf = SourceBuffer("a\nbc\n")
        assert buf.line_of(0) == 1
        assert buf.line_of(2) == 2
        assert buf.line_of(3) == 2
        assert buf.line_of(5) == 3

    def test_line_start(self):
        buf = SourceBuffer("a\nbc\nd")
        assert buf.line_start(1) == 0
        assert buf.line_start(3) == 5


class TestExpandToLines:

    def test_whole_line_taken_with_indent_and_newline(self):
        text = "int a;\n  int b;\nint c;\n"
        buf = SourceBuffer(text)
        lo, hi = buf.expand_to_lines(*span(text, "int b;"))
        assert text[:lo] + text[hi:] == "int a;\nint c;\n"

    def test_trailing_declaration_keeps_line(self):
        text = "int a; int b;\n"
        buf = SourceBuffer(text)
        assert buf.expand_to_lines(*span(text, "int b;")) == span(text, "int b;")

    def test_leading_declaration_takes_following_blanks(self):
        text = "int a; int b;\n"
        buf = SourceBuffer(text)
        lo, hi = buf.expand_to_lines(*span(text, "int a;"))
        assert text[:lo] + text[hi:] == "int b;\n"

    def test_last_line_without_newline(self):
        text = "int a;\nint b;"
        buf = SourceBuffer(text)
        assert buf.expand_to_lines(*span(text, "int b;")) == (7, 13)


class TestWidening:

    def test_extend_to_semicolon(self):
        text = "struct S {}  ;\n"
        buf = SourceBuffer(text)
        assert buf.extend_to_semicolon(text.index("}") + 1) == text.index(";") + 1

    def test_no_semicolon(self):
        text = "void f() {}\nint x;"
        buf = SourceBuffer(text)
        end = text.index("}") + 1
        assert buf.extend_to_semicolon(end) == end

    def test_extend_over_attributes(self):
        text = "[[a]] [[b]]\nint x;"
        buf = SourceBuffer(text)
        assert buf.extend_over_attributes(text.index("int")) == 0

    def test_no_attributes(self):
        text = "int x; int y;"
        buf = SourceBuffer(text)
        assert buf.extend_over_attributes(7) == 7


class TestStructure:

    def test_find_forward_skips_comments(self):
        text = "/* { */ namespace a {"
        buf = SourceBuffer(text)
        assert buf.find_forward("{", 0) == len(text) - 1
        assert buf.find_forward("{", 0, 10) == -1

    def test_is_blank(self):
        text = "  /* x */ \n // y\n  int a;"
        buf = SourceBuffer(text)
        assert buf.is_blank(0, text.index("int"))
        assert not buf.is_blank(0, len(text))
        assert buf.is_blank(0, len(text), [span(text, "int a;")])

    def test_has_word(self):
        buf = SourceBuffer("inline namespace a { int inlined; }")
        assert buf.has_word(0, 20, "inline")
        assert not buf.has_word(20, 35, "inline")
