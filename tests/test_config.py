# tests/test_config.py
"""Tests for OptimizerConfig and the error hierarchy."""

import pytest

from cxxprune.config import (
    DEFAULT_FLAGS,
    DELAYED_PARSING_OFF,
    DELAYED_PARSING_ON,
    LIBCLANG_ENV,
    OptimizerConfig,
)
from cxxprune.errors import (
    Diagnostic,
    EditConflict,
    ErrorCode,
    FrontEndFailure,
    GraphFrozenError,
    InternalInconsistency,
    MissingFrontEndService,
    PruneError,
)


class TestOptimizerConfig:

    def test_create_normalizes_iterables(self):
        cfg = OptimizerConfig.create(["-O2"], iter(["LOCAL", "LOCAL"]), ["keep_me"])
        assert cfg.flags == ("-O2",)
        assert cfg.macros_to_keep == frozenset({"LOCAL"})
        assert cfg.identifiers_to_keep == frozenset({"keep_me"})
        assert cfg.entry_point == "main"

    def test_default_flags(self):
        assert OptimizerConfig.create().front_end_flags() == list(DEFAULT_FLAGS)
        assert OptimizerConfig.create(["-std=c++20"]).front_end_flags() == ["-std=c++20"]

    def test_libclang_path_from_environment(self, monkeypatch):
        monkeypatch.setenv(LIBCLANG_ENV, "/opt/llvm/lib/libclang.so")
        assert OptimizerConfig.create().libclang_path == "/opt/llvm/lib/libclang.so"
        monkeypatch.delenv(LIBCLANG_ENV)
        assert OptimizerConfig.create().libclang_path is None

    @pytest.mark.parametrize("flags, expected", [
        ([DELAYED_PARSING_ON], True),
        ([DELAYED_PARSING_OFF], False),
        ([DELAYED_PARSING_ON, DELAYED_PARSING_OFF], False),
        ([DELAYED_PARSING_OFF, DELAYED_PARSING_ON], True),
    ])
    def test_delayed_template_parsing(self, flags, expected):
        assert OptimizerConfig.create(flags).delayed_template_parsing() is expected

    def test_delayed_parsing_platform_default(self, monkeypatch):
        monkeypatch.setattr("sys.platform", "win32")
        assert OptimizerConfig.create().delayed_template_parsing() is True
        monkeypatch.setattr("sys.platform", "linux")
        assert OptimizerConfig.create().delayed_template_parsing() is False

    def test_frozen(self):
        cfg = OptimizerConfig.create()
        with pytest.raises(AttributeError):
            cfg.entry_point = "WinMain"


class TestErrors:

    def test_front_end_failure_message(self):
        diags = [
            Diagnostic(3, "expected ';'", "a.cpp", 2, 7),
            Diagnostic(4, "too many errors"),
        ]
        exc = FrontEndFailure(diags)
        assert exc.diagnostics == tuple(diags)
        assert exc.message.startswith(
            "Optimizer failed. The following compilation errors were detected:\n")
        assert "a.cpp:2:7: expected ';'" in exc.message
        assert exc.message.endswith("too many errors")
        assert str(exc).startswith("[PRUNE-1001]")
        assert not exc.code.is_internal

    @pytest.mark.parametrize("cls, code", [
        (InternalInconsistency, ErrorCode.INTERNAL),
        (MissingFrontEndService, ErrorCode.MISSING_SERVICE),
        (GraphFrozenError, ErrorCode.GRAPH_FROZEN),
    ])
    def test_internal_codes(self, cls, code):
        exc = cls("broken")
        assert exc.code is code
        assert exc.code.is_internal
        assert isinstance(exc, PruneError)

    def test_edit_conflict(self):
        exc = EditConflict((1, 5), (3, 9))
        assert isinstance(exc, InternalInconsistency)
        assert "[1, 5)" in exc.message and "[3, 9)" in exc.message

    def test_explicit_code_override(self):
        assert PruneError("x", ErrorCode.EDIT_CONFLICT).code is ErrorCode.EDIT_CONFLICT
