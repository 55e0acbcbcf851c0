# tests/test_optimizer_e2e.py
"""
End-to-end tests: real C++ through libclang and every pass.

Inputs avoid ``#include`` so the results do not depend on the system's
standard library headers.
"""

import pytest

from cxxprune.errors import FrontEndFailure

from tests.conftest import libclang_required


pytestmark = libclang_required


class TestUnusedDeclarations:

    def test_unused_function_removed(self, run_optimizer):
        out = run_optimizer("""\
            void unused() {}
            int main() {
              return 0;
            }
        """)
        assert out == "int main() {\n  return 0;\n}\n"

    def test_transitively_used_function_kept(self, run_optimizer):
        out = run_optimizer("""\
            int leaf() { return 1; }
            int middle() { return leaf() + 1; }
            int orphan() { return middle(); }
            int main() { return middle(); }
        """)
        assert "int leaf()" in out
        assert "int middle()" in out
        assert "orphan" not in out

    def test_mutual_recursion_without_root_removed(self, run_optimizer):
        out = run_optimizer("""\
            int ping(int n);
            int pong(int n) { return n ? ping(n - 1) : 0; }
            int ping(int n) { return n ? pong(n - 1) : 1; }
            int main() { return 0; }
        """)
        assert "ping" not in out and "pong" not in out

    def test_unused_class_member_removed(self, run_optimizer):
        out = run_optimizer("""\
            struct S {
                int used() { return 1; }
                int unused() { return 2; }
            };
            int main() { S s; return s.used(); }
        """)
        assert "int used()" in out
        assert "unused" not in out
        assert "struct S {" in out

    def test_unused_template_removed(self, run_optimizer):
        out = run_optimizer("""\
            template <class T> T twice(T v) { return v + v; }
            template <class T> T thrice(T v) { return v + v + v; }
            int main() { return twice(2); }
        """)
        assert "twice" in out
        assert "thrice" not in out

    def test_global_with_side_effects_kept(self, run_optimizer):
        out = run_optimizer("""\
            int init() { return 42; }
            int counter = init();
            int unused_global = 5;
            int main() { return 0; }
        """)
        assert "int counter = init();" in out
        assert "int init()" in out
        assert "unused_global" not in out

    def test_identifiers_to_keep(self, run_optimizer):
        source = """\
            int helper() { return 1; }
            int main() { return 0; }
        """
        assert "helper" not in run_optimizer(source)
        assert "int helper()" in run_optimizer(source, identifiers_to_keep=["helper"])


class TestForwardDeclarations:

    def test_redundant_forward_declarations_removed(self, run_optimizer):
        out = run_optimizer("""\
            class C;
            class C;
            class C { public: int v; };
            int main() { C c; c.v = 1; return c.v; }
        """)
        assert "class C;" not in out
        assert out.count("class C {") == 1

    def test_forward_declaration_used_before_definition_kept(self, run_optimizer):
        out = run_optimizer("""\
            int helper(int);
            int main() { return helper(1); }
            int helper(int v) { return v; }
        """)
        assert "int helper(int);" in out
        assert "int helper(int v)" in out


class TestNamespaces:

    def test_only_live_reopening_survives(self, run_optimizer):
        out = run_optimizer("""\
            namespace a {
            void f() {}
            }
            namespace a {
            int g() { return 1; }
            }
            namespace a {
            void h() {}
            }
            int main() { return a::g(); }
        """)
        assert out.count("namespace a") == 1
        assert "int g() { return 1; }" in out
        assert "void f()" not in out and "void h()" not in out

    def test_live_reopenings_merged(self, run_optimizer):
        out = run_optimizer("""\
            namespace a {
            int f() { return 1; }
            }
            namespace a {
            int g() { return 2; }
            }
            int main() { return a::f() + a::g(); }
        """)
        assert out.startswith(
            "namespace a {\nint f() { return 1; }\nint g() { return 2; }\n}\n")

    def test_emptied_namespace_removed(self, run_optimizer):
        out = run_optimizer("""\
            namespace outer {
            namespace inner {
            int dead() { return 0; }
            }
            }
            int main() { return 0; }
        """)
        assert out == "int main() { return 0; }\n"


class TestPreprocessor:

    def test_false_conditional_removed(self, run_optimizer):
        out = run_optimizer("""\
            #if 0
            int junk() { return 0; }
            #endif
            int main() { return 0; }
        """)
        assert out == "int main() { return 0; }\n"

    def test_macro_used_only_by_unused_function_removed(self, run_optimizer):
        out = run_optimizer("""\
            #define SQR(x) ((x) * (x))
            int unused(int v) { return SQR(v); }
            int main() { return 0; }
        """)
        assert out == "int main() { return 0; }\n"

    def test_macro_used_by_live_code_kept(self, run_optimizer):
        out = run_optimizer("""\
            #define N 3
            int main() { return N; }
        """)
        assert "#define N 3" in out

    def test_protected_macro_block_kept(self, run_optimizer):
        source = """\
            #ifdef LOCAL
            int debug_only() { return 1; }
            #endif
            int main() { return 0; }
        """
        assert "debug_only" not in run_optimizer(source)
        kept = run_optimizer(source, macros_to_keep=["LOCAL"])
        assert "#ifdef LOCAL" in kept
        assert "debug_only" in kept


SPECIALIZED = """\
    template <class T> int h(T) { return 0; }
    template <> int h<int>(int) { return 1; }
    template <> int h<char>(char) { return 2; }
    int main() { return h(1); }
"""

DEPENDENT_MEMBER = """\
    struct A {
      int foo() { return 1; }
      int bar() { return 2; }
    };
    template <class T> int call(T t) { return t.foo(); }
    int main() { A a; return call(a); }
"""

DELAYED_FLAGS = ["-x", "c++", "-std=c++17", "-fdelayed-template-parsing"]


class TestTemplates:

    def test_specialization_keeps_its_primary(self, run_optimizer):
        out = run_optimizer(SPECIALIZED)
        assert "template <class T> int h(T)" in out
        assert "int h<int>(int)" in out
        assert "h<char>" not in out

    @pytest.mark.parametrize("flags", [(), DELAYED_FLAGS], ids=["eager", "delayed"])
    def test_dependent_member_call_kept(self, run_optimizer, flags):
        out = run_optimizer(DEPENDENT_MEMBER, flags=flags)
        assert "int foo()" in out
        assert "bar" not in out
        assert "t.foo()" in out

    def test_class_template_members(self, run_optimizer):
        out = run_optimizer("""\
            template <class T> struct Box {
              T v;
              T get() const { return v; }
              T unused() const { return v + v; }
            };
            int main() { Box<int> b{3}; return b.get(); }
        """)
        assert "struct Box {" in out
        assert "T get() const" in out
        assert "unused" not in out

    def test_partial_specialization_kept_with_primary(self, run_optimizer):
        out = run_optimizer("""\
            template <class T> struct Kind { static int id() { return 0; } };
            template <class T> struct Kind<T*> { static int id() { return 1; } };
            template <class T> struct Other {};
            int main() { return Kind<int*>::id(); }
        """)
        assert "struct Kind {" in out
        assert "struct Kind<T*>" in out
        assert "Other" not in out

    def test_used_class_specialization_kept(self, run_optimizer):
        out = run_optimizer("""\
            template <class T> struct S { int v = 0; };
            template <> struct S<char> { int w = 1; };
            int main() { S<char> s; return sizeof(s); }
        """)
        assert "template <class T> struct S" in out
        assert "struct S<char>" in out


class TestPipeline:

    @pytest.mark.parametrize("source", [
        """\
            namespace a {
            int f() { return 1; }
            void dead() {}
            }
            namespace a {
            int g() { return 2; }
            }
            #if 0
            int junk;
            #endif
            #define UNUSED 1
            int main() { return a::f() + a::g(); }
        """,
        SPECIALIZED,
        DEPENDENT_MEMBER,
        """\
            #define SQR(x) ((x) * (x))
            class C;
            class C { public: int v; int spare() { return SQR(v); } };
            int main() { C c; c.v = 2; return c.v; }
        """,
    ], ids=["namespaces", "specializations", "dependent-member", "members-and-macros"])
    def test_idempotent(self, run_optimizer, source):
        first = run_optimizer(source)
        assert run_optimizer(first, name="again.cpp") == first

    def test_front_end_error_aborts(self, run_optimizer):
        with pytest.raises(FrontEndFailure) as info:
            run_optimizer("""\
                int main() { return undeclared_name; }
            """)
        assert "undeclared_name" in info.value.message
        assert info.value.diagnostics
