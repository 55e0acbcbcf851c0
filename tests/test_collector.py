# tests/test_collector.py
"""Token-level helpers of the dependency collector."""

from types import SimpleNamespace

import pytest
from clang import cindex

from cxxprune.collector import member_name

TK = cindex.TokenKind
KEYWORDS = {"template", "this"}


def member_ref(*spellings):
    """Cursor stand-in whose tokens are *spellings*."""
    def kind(s):
        if s in KEYWORDS:
            return TK.KEYWORD
        if s.isdigit():
            return TK.LITERAL
        return TK.IDENTIFIER if s[0].isalpha() or s[0] == "_" else TK.PUNCTUATION
    tokens = [SimpleNamespace(spelling=s, kind=kind(s)) for s in spellings]
    return SimpleNamespace(get_tokens=lambda: iter(tokens))


class TestMemberName:

    @pytest.mark.parametrize("tokens, expected", [
        (("t", ".", "foo"), "foo"),
        (("p", "->", "bar"), "bar"),
        (("a", ".", "b", ".", "c"), "c"),
        (("t", ".", "template", "get", "<", "0", ">"), "get"),
        (("foo",), "foo"),
    ])
    def test_name_after_access(self, tokens, expected):
        assert member_name(member_ref(*tokens)) == expected

    def test_no_tokens(self):
        assert member_name(member_ref()) == ""
