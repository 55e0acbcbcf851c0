# tests/test_harness.py
"""
Tests for the fixture runner CLI.  The optimizer itself is replaced by a
stub so these run without libclang.
"""

import json

import pytest

from cxxprune import harness
from cxxprune.config import DEFAULT_FLAGS
from cxxprune.errors import Diagnostic, FrontEndFailure
from cxxprune.harness import (
    EXIT_ERROR,
    EXIT_INFRA,
    EXIT_OK,
    FixtureCase,
    FlagsCache,
    compare,
    main,
    parse_search_list,
)


GCC_OUTPUT = """\
Using built-in specs.
ignoring nonexistent directory "/usr/local/include/x86_64-linux-gnu"
#include "..." search starts here:
#include <...> search starts here:
 /usr/include/c++/13
 /usr/lib/gcc/x86_64-linux-gnu/13/include
 /usr/include
End of search list.
"""

EXPECTED = "int main() {}\n"


@pytest.fixture
def cache_file(tmp_path):
    path = tmp_path / "flags.json"
    path.write_text(FlagsCache("g++", ["-std=c++17"]).to_json(), encoding="utf-8")
    return path


@pytest.fixture
def case_dir(tmp_path):
    root = tmp_path / "unused_function"
    root.mkdir()
    (root / "input.cpp").write_text("void f() {}\n" + EXPECTED, encoding="utf-8")
    (root / "expected.cpp").write_text(EXPECTED, encoding="utf-8")
    (root / "case.json").write_text(json.dumps({"macros": ["LOCAL"]}), encoding="utf-8")
    return root


@pytest.fixture
def fake_optimize(monkeypatch):
    calls = []

    def install(result=EXPECTED, error=None):
        def _optimize(path, flags, macros, identifiers):
            calls.append((path, list(flags), list(macros), list(identifiers)))
            if error is not None:
                raise error
            return result
        monkeypatch.setattr(harness, "optimize", _optimize)
        return calls

    return install


class TestFlagsCache:

    def test_parse_search_list(self):
        assert parse_search_list(GCC_OUTPUT) == [
            "/usr/include/c++/13",
            "/usr/lib/gcc/x86_64-linux-gnu/13/include",
            "/usr/include",
        ]

    def test_parse_search_list_without_markers(self):
        assert parse_search_list("clang version 17\n") == []

    def test_round_trip(self, cache_file):
        cache = FlagsCache.load(cache_file)
        assert cache.compiler == "g++"
        assert cache.flags == ["-std=c++17"]

    def test_version_mismatch(self, tmp_path):
        path = tmp_path / "old.json"
        path.write_text(json.dumps({"version": 0, "flags": []}), encoding="utf-8")
        with pytest.raises(ValueError, match="flags cache"):
            FlagsCache.load(path)

    def test_prepare_writes_cache(self, tmp_path, monkeypatch):
        monkeypatch.setattr(harness, "probe_compiler", lambda: ("g++", ["/usr/include"]))
        target = tmp_path / "sub" / "flags.json"
        assert main(["prepare", str(target)]) == EXIT_OK
        cache = FlagsCache.load(target)
        assert cache.flags == list(DEFAULT_FLAGS) + ["-isystem/usr/include"]

    def test_prepare_without_compiler(self, tmp_path, monkeypatch):
        monkeypatch.setattr(harness, "probe_compiler", lambda: ("", []))
        target = tmp_path / "flags.json"
        assert main(["prepare", str(target)]) == EXIT_OK
        assert FlagsCache.load(target).flags == list(DEFAULT_FLAGS)


class TestRun:

    def test_pass(self, cache_file, case_dir, tmp_path, fake_optimize, capsys):
        calls = fake_optimize()
        out_dir = tmp_path / "out"
        code = main(["run", str(cache_file), str(case_dir), "--temp", str(out_dir)])
        assert code == EXIT_OK
        assert "PASS unused_function" in capsys.readouterr().out
        assert (out_dir / "unused_function.result.cpp").read_text() == EXPECTED
        (path, flags, macros, identifiers), = calls
        assert path.endswith("input.cpp")
        assert flags == ["-std=c++17"]
        assert macros == ["LOCAL"]
        assert identifiers == []

    def test_mismatch(self, cache_file, case_dir, tmp_path, fake_optimize, capsys):
        fake_optimize(result="void f() {}\n" + EXPECTED)
        code = main(["run", str(cache_file), str(case_dir), "--temp", str(tmp_path)])
        assert code == EXIT_ERROR
        out = capsys.readouterr().out
        assert "FAIL unused_function" in out
        assert "void f() {}" in out

    def test_front_end_failure(self, cache_file, case_dir, tmp_path, fake_optimize, capsys):
        diag = Diagnostic(3, "use of undeclared identifier 'x'", "input.cpp", 1, 5)
        fake_optimize(error=FrontEndFailure([diag]))
        code = main(["run", str(cache_file), str(case_dir), "--temp", str(tmp_path)])
        assert code == EXIT_ERROR
        out = capsys.readouterr().out
        assert "input.cpp:1:5: use of undeclared identifier 'x'" in out
        assert "FAIL unused_function" in out

    def test_missing_cache(self, tmp_path, case_dir, fake_optimize):
        calls = fake_optimize()
        assert main(["run", str(tmp_path / "nope.json"), str(case_dir)]) == EXIT_INFRA
        assert calls == []

    def test_missing_expected(self, cache_file, case_dir, fake_optimize):
        (case_dir / "expected.cpp").unlink()
        calls = fake_optimize()
        assert main(["run", str(cache_file), str(case_dir)]) == EXIT_INFRA
        assert calls == []

    def test_no_command(self):
        assert main([]) == EXIT_INFRA


class TestFixtureCase:

    def test_defaults_without_options(self, tmp_path):
        case = FixtureCase.load(tmp_path)
        assert (case.flags, case.macros, case.identifiers) == ([], [], [])
        assert case.input == tmp_path / "input.cpp"

    def test_compare(self):
        assert compare("a\n", "a\n", "x") == []
        diff = compare("a\n", "b\n", "x")
        assert "-a\n" in diff and "+b\n" in diff
