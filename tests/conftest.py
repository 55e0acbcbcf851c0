# tests/conftest.py
"""
Shared fixtures for the cxxprune test-suite.

Pure-Python units never touch libclang.  End-to-end tests go through
``run_optimizer`` / ``libclang_required`` and are skipped when the shared
library cannot be loaded.
"""

import os
import textwrap

import pytest
from clang import cindex

from cxxprune import optimize
from cxxprune.config import LIBCLANG_ENV
from cxxprune.source_text import SourceBuffer


# ── libclang availability ───────────────────────────────────────

def _has_libclang():
    path = os.environ.get(LIBCLANG_ENV)
    if path and not cindex.Config.loaded:
        cindex.Config.set_library_file(path)
    try:
        cindex.Index.create()
        return True
    except (cindex.LibclangError, OSError):
        return False


LIBCLANG_AVAILABLE = _has_libclang()

libclang_required = pytest.mark.skipif(
    not LIBCLANG_AVAILABLE,
    reason="libclang shared library not available"
)


# ── Helpers ─────────────────────────────────────────────────────

MAIN_FILE = "/work/main.cpp"


def make_buffer(source):
    """SourceBuffer over dedented *source*."""
    return SourceBuffer(textwrap.dedent(source))


def span(text, needle, occurrence=0):
    """``(start, end)`` of the *occurrence*-th appearance of *needle* in *text*."""
    start = -1
    for _ in range(occurrence + 1):
        start = text.index(needle, start + 1)
    return start, start + len(needle)


def line_span(text, needle):
    """Offsets of the whole line (with its line break) containing *needle*."""
    pos = text.index(needle)
    start = text.rfind("\n", 0, pos) + 1
    end = text.find("\n", pos)
    return start, (len(text) if end == -1 else end + 1)


@pytest.fixture
def run_optimizer(tmp_path):
    """Write dedented C++ source to a temp file and optimize it."""
    if not LIBCLANG_AVAILABLE:
        pytest.skip("libclang shared library not available")

    def _run(source, name="input.cpp", **kwargs):
        path = tmp_path / name
        path.write_text(textwrap.dedent(source), encoding="utf-8")
        return optimize(str(path), **kwargs)

    return _run
