"""Tests for the Go front-end: declarations, lowering of bodies, joins and loops."""

import logging

import pytest

from ifacecheck.program.ssa import (
    Alloc,
    Call,
    Const,
    Extract,
    Field,
    FieldAddr,
    FreeVar,
    Function,
    Global,
    MakeClosure,
    MakeInterface,
    Package,
    Parameter,
    Phi,
    Store,
    TypeAssert,
    UnOp,
)
from ifacecheck.program.types import (
    Interface,
    Named,
    Pointer,
    Struct,
    TypeName,
    deref_named,
    implements,
    method_set,
)

DECLS = """
package p

type Printer interface {
    Print(string)
}

type Reader interface {
    Read() string
}

type ReadPrinter interface {
    Reader
    Print(string)
}

type A struct{}

func (a *A) Print(s string) {}

type B struct {
    name string
}

func (b B) Print(s string) {}

func (b B) Read() string { return b.name }

type Holder struct {
    *A
    out  Printer
    next *Holder
}

type Alias = B
"""


def _build(go_tree, body: str = "") -> Package:
    loader = go_tree({"example.com/p/p.go": DECLS + body})
    return loader.import_package("example.com/p")


def _fn(pkg: Package, name: str) -> Function:
    return next(f for f in pkg.src_functions() if f.name == name)


def _of(fn: Function, kind) -> list:
    return [i for i in fn.instructions() if isinstance(i, kind)]


def _invokes(fn: Function) -> list[Call]:
    return [c for c in _of(fn, Call) if c.call.is_invoke()]


class TestDeclarations:
    def test_named_types_and_methods(self, go_tree):
        pkg = _build(go_tree)
        a = pkg.lookup("A")
        b = pkg.lookup("B")
        assert isinstance(a, TypeName) and isinstance(a.type, Named)
        assert a.type.package_path == "example.com/p"
        assert a.type.methods["Print"].pointer_receiver
        assert not b.type.methods["Print"].pointer_receiver
        assert isinstance(b.type.underlying(), Struct)

    def test_interface_method_names_include_embedded(self, go_tree):
        pkg = _build(go_tree)
        iface = pkg.lookup("ReadPrinter").type.underlying()
        assert isinstance(iface, Interface)
        assert sorted(iface.method_names()) == ["Print", "Read"]

    def test_method_sets_follow_receiver_kind(self, go_tree):
        pkg = _build(go_tree)
        a = pkg.lookup("A").type
        b = pkg.lookup("B").type
        printer = pkg.lookup("Printer").type.underlying()
        assert "Print" not in method_set(a)
        assert "Print" in method_set(Pointer(a))
        assert implements(b, printer)
        assert not implements(a, printer)
        assert implements(Pointer(a), printer)

    def test_embedded_pointer_field_promotes_methods(self, go_tree):
        pkg = _build(go_tree)
        holder = pkg.lookup("Holder").type
        assert "Print" in method_set(holder)
        fields = holder.underlying().fields
        assert [f.name for f in fields] == ["A", "out", "next"]
        assert fields[0].embedded

    def test_alias_shares_the_aliased_type(self, go_tree):
        pkg = _build(go_tree)
        assert pkg.lookup("Alias").type is pkg.lookup("B").type

    def test_method_functions_are_lowered(self, go_tree):
        pkg = _build(go_tree)
        read = next(f for f in pkg.functions if f.name == "Read")
        assert read.receiver_type is pkg.lookup("B").type
        assert pkg.lookup("B").type.methods["Read"].function is read
        assert [p.name for p in read.params] == ["b"]


class TestLowering:
    def test_interface_declaration_wraps_allocation(self, go_tree):
        pkg = _build(go_tree, """
            func f() {
                var p Printer = &A{}
                p.Print("x")
            }
        """)
        fn = _fn(pkg, "f")
        (call,) = _invokes(fn)
        assert call.call.method == "Print"
        assert isinstance(call.call.value, MakeInterface)
        assert isinstance(call.call.value.x, Alloc)
        assert deref_named(call.call.value.x.type) is pkg.lookup("A").type
        assert len(call.call.args) == 1
        assert pkg.files[0].line_text(call.pos.line).strip().startswith("p.Print")

    def test_static_method_call_takes_receiver_first(self, go_tree):
        pkg = _build(go_tree, """
            func f() {
                a := A{}
                a.Print("x")
            }
        """)
        fn = _fn(pkg, "f")
        assert not _invokes(fn)
        static = [c for c in _of(fn, Call) if c.call.static_callee() is not None]
        assert len(static) == 1
        assert static[0].call.static_callee().name == "Print"
        receiver = static[0].call.args[0]
        assert isinstance(receiver, UnOp) and receiver.op == "&"

    def test_field_through_pointer_is_address_then_load(self, go_tree):
        pkg = _build(go_tree, """
            func f(h *Holder) {
                h.out.Print("x")
            }
        """)
        (call,) = _invokes(_fn(pkg, "f"))
        load = call.call.value
        assert isinstance(load, UnOp) and load.op == "*"
        assert isinstance(load.x, FieldAddr) and load.x.field == "out"
        assert isinstance(load.x.x, Parameter)

    def test_promoted_method_goes_through_embedded_field(self, go_tree):
        pkg = _build(go_tree, """
            func f(h Holder) {
                h.Print("x")
            }
        """)
        fn = _fn(pkg, "f")
        static = [c for c in _of(fn, Call) if c.call.static_callee() is not None]
        assert len(static) == 1
        receiver = static[0].call.args[0]
        assert isinstance(receiver, Field) and receiver.field == "A"
        assert isinstance(receiver.type, Pointer)

    def test_call_argument_converted_to_interface(self, go_tree):
        pkg = _build(go_tree, """
            func use(p Printer) {}

            func f() {
                use(B{})
            }
        """)
        fn = _fn(pkg, "f")
        (call,) = [c for c in _of(fn, Call) if c.call.static_callee() is not None]
        assert isinstance(call.call.args[0], MakeInterface)

    def test_if_else_join_inserts_phi(self, go_tree):
        pkg = _build(go_tree, """
            func f(flag bool) {
                var p Printer
                if flag {
                    p = &A{}
                } else {
                    p = B{}
                }
                p.Print("x")
            }
        """)
        (call,) = _invokes(_fn(pkg, "f"))
        phi = call.call.value
        assert isinstance(phi, Phi)
        assert len(phi.edges) == 2
        assert all(isinstance(e, MakeInterface) for e in phi.edges)

    def test_if_without_else_joins_with_zero_value(self, go_tree):
        pkg = _build(go_tree, """
            func f(flag bool) {
                var p Printer
                if flag {
                    p = &A{}
                }
                p.Print("x")
            }
        """)
        (call,) = _invokes(_fn(pkg, "f"))
        phi = call.call.value
        assert isinstance(phi, Phi)
        assert isinstance(phi.edges[0], MakeInterface)
        assert isinstance(phi.edges[1], Const) and phi.edges[1].is_nil()

    def test_branch_that_returns_does_not_join(self, go_tree):
        pkg = _build(go_tree, """
            func f(flag bool) {
                var p Printer = B{}
                if flag {
                    p = &A{}
                    return
                }
                p.Print("x")
            }
        """)
        (call,) = _invokes(_fn(pkg, "f"))
        assert isinstance(call.call.value, MakeInterface)

    def test_loop_header_phi_carries_back_edge(self, go_tree):
        pkg = _build(go_tree, """
            func f(n int) {
                var p Printer = &A{}
                for i := 0; i < n; i++ {
                    p.Print("x")
                    p = B{}
                }
            }
        """)
        (call,) = _invokes(_fn(pkg, "f"))
        phi = call.call.value
        assert isinstance(phi, Phi)
        assert len(phi.edges) == 2
        first, back = phi.edges
        assert isinstance(first.x, Alloc)
        assert back.x.type is pkg.lookup("B").type

    def test_self_assignment_in_loop_makes_cycle(self, go_tree):
        pkg = _build(go_tree, """
            func f(p Printer, n int) {
                for n > 0 {
                    p.Print("x")
                    p = p
                }
            }
        """)
        (call,) = _invokes(_fn(pkg, "f"))
        phi = call.call.value
        assert isinstance(phi, Phi)
        assert phi.edges[1] is phi

    def test_multi_value_call_is_extracted(self, go_tree):
        pkg = _build(go_tree, """
            func two() (Printer, error) {
                return &A{}, nil
            }

            func f() {
                p, _ := two()
                p.Print("x")
            }
        """)
        (call,) = _invokes(_fn(pkg, "f"))
        extract = call.call.value
        assert isinstance(extract, Extract)
        assert extract.index == 0
        assert isinstance(extract.tuple, Call)

    def test_comma_ok_type_assertion(self, go_tree):
        pkg = _build(go_tree, """
            func f(r Reader) {
                if p, ok := r.(Printer); ok {
                    p.Print("x")
                }
            }
        """)
        (call,) = _invokes(_fn(pkg, "f"))
        extract = call.call.value
        assert isinstance(extract, Extract)
        assert isinstance(extract.tuple, TypeAssert)
        assert extract.tuple.comma_ok

    def test_type_switch_binds_asserted_value(self, go_tree):
        pkg = _build(go_tree, """
            func f(r Reader) {
                switch v := r.(type) {
                case Printer:
                    v.Print("x")
                }
            }
        """)
        (call,) = _invokes(_fn(pkg, "f"))
        assert isinstance(call.call.value, TypeAssert)

    def test_closure_captures_free_variable(self, go_tree):
        pkg = _build(go_tree, """
            func f() {
                p := Printer(&A{})
                func() {
                    p.Print("x")
                }()
            }
        """)
        outer = _fn(pkg, "f")
        assert len(outer.anon_funcs) == 1
        assert _of(outer, MakeClosure)
        inner = outer.anon_funcs[0]
        assert inner.parent is outer
        (call,) = _invokes(inner)
        assert isinstance(call.call.value, FreeVar)
        assert inner in pkg.src_functions()

    def test_package_var_initializer_in_synthetic_init(self, go_tree):
        pkg = _build(go_tree, """
            var Default Printer = &A{}

            func f() {
                Default.Print("x")
            }
        """)
        glob = pkg.lookup("Default")
        assert isinstance(glob, Global)
        init = next(f for f in pkg.functions if f.synthetic)
        (store,) = _of(init, Store)
        assert store.addr is glob
        assert isinstance(store.val, MakeInterface)
        (call,) = _invokes(_fn(pkg, "f"))
        assert isinstance(call.call.value, UnOp) and call.call.value.x is glob

    def test_composite_literal_field_store_converts(self, go_tree):
        pkg = _build(go_tree, """
            func f() *Holder {
                return &Holder{out: B{}}
            }
        """)
        fn = _fn(pkg, "f")
        stores = _of(fn, Store)
        assert len(stores) == 1
        assert isinstance(stores[0].addr, FieldAddr) and stores[0].addr.field == "out"
        assert isinstance(stores[0].val, MakeInterface)

    def test_go_and_defer_calls_are_lowered(self, go_tree):
        pkg = _build(go_tree, """
            func f(p Printer) {
                defer p.Print("deferred")
                go p.Print("async")
            }
        """)
        assert len(_invokes(_fn(pkg, "f"))) == 2

    def test_unsupported_syntax_is_logged(self, go_tree, caplog):
        with caplog.at_level(logging.DEBUG, logger="ifacecheck.program.builder"):
            pkg = _build(go_tree, """
                func f() {
                    type local struct{}
                }
            """)
        assert _fn(pkg, "f") is not None
        assert "Unsupported local declaration" in caplog.text


class TestJumps:
    def test_continue_path_does_not_reach_later_call(self, go_tree):
        pkg = _build(go_tree, """
            func f(items []string) {
                for _, s := range items {
                    var p Printer = B{}
                    if s == "" {
                        p = &A{}
                        continue
                    }
                    p.Print(s)
                }
            }
        """)
        (call,) = _invokes(_fn(pkg, "f"))
        value = call.call.value
        assert isinstance(value, MakeInterface)
        assert value.x.type is pkg.lookup("B").type

    def test_break_path_does_not_reach_later_call(self, go_tree):
        pkg = _build(go_tree, """
            func f(items []string) {
                for _, s := range items {
                    var p Printer = B{}
                    if s == "" {
                        p = &A{}
                        break
                    }
                    p.Print(s)
                }
            }
        """)
        (call,) = _invokes(_fn(pkg, "f"))
        value = call.call.value
        assert isinstance(value, MakeInterface)
        assert value.x.type is pkg.lookup("B").type

    def test_break_state_joins_loop_exit(self, go_tree):
        pkg = _build(go_tree, """
            func f(n int) {
                var p Printer = B{}
                for i := 0; i < n; i++ {
                    if i == 3 {
                        p = &A{}
                        break
                    }
                }
                p.Print("x")
            }
        """)
        (call,) = _invokes(_fn(pkg, "f"))
        exit_phi = call.call.value
        assert isinstance(exit_phi, Phi)
        header, broken = exit_phi.edges
        assert isinstance(header, Phi)
        assert isinstance(broken, MakeInterface) and isinstance(broken.x, Alloc)

    def test_continue_state_joins_back_edge(self, go_tree):
        pkg = _build(go_tree, """
            func f(n int) {
                var p Printer = B{}
                for i := 0; i < n; i++ {
                    p.Print("x")
                    if i == 1 {
                        p = &A{}
                        continue
                    }
                    p = B{}
                }
            }
        """)
        (call,) = _invokes(_fn(pkg, "f"))
        header = call.call.value
        assert isinstance(header, Phi)
        entry, back = header.edges
        assert isinstance(entry, MakeInterface)
        assert isinstance(back, Phi) and len(back.edges) == 2
        assert back.edges[0].x.type is pkg.lookup("B").type
        assert isinstance(back.edges[1].x, Alloc)

    def test_labelled_break_leaves_outer_loop(self, go_tree):
        pkg = _build(go_tree, """
            func f(rows [][]string) {
                var p Printer = B{}
            outer:
                for _, row := range rows {
                    for _, s := range row {
                        if s == "" {
                            p = &A{}
                            break outer
                        }
                    }
                }
                p.Print("x")
            }
        """)
        (call,) = _invokes(_fn(pkg, "f"))
        exit_phi = call.call.value
        assert isinstance(exit_phi, Phi)
        header, broken = exit_phi.edges
        assert isinstance(header, Phi)
        assert isinstance(broken, MakeInterface) and isinstance(broken.x, Alloc)

    def test_break_inside_switch_leaves_only_the_switch(self, go_tree):
        pkg = _build(go_tree, """
            func f(items []string) {
                for _, s := range items {
                    var p Printer = B{}
                    switch s {
                    case "":
                        break
                    default:
                        break
                    }
                    p.Print(s)
                }
            }
        """)
        assert len(_invokes(_fn(pkg, "f"))) == 1

    def test_statements_after_a_jump_are_not_lowered(self, go_tree):
        pkg = _build(go_tree, """
            func f(items []string) {
                for range items {
                    continue
                    var p Printer = &A{}
                    p.Print("dead")
                }
            }
        """)
        assert _invokes(_fn(pkg, "f")) == []

    def test_loop_without_condition_exits_only_through_break(self, go_tree):
        pkg = _build(go_tree, """
            func f(p Printer) {
                for {
                    p.Print("x")
                }
                p.Print("never")
            }
        """)
        assert len(_invokes(_fn(pkg, "f"))) == 1

    def test_goto_target_makes_values_opaque(self, go_tree):
        pkg = _build(go_tree, """
            func f(n int) {
                var p Printer = B{}
            again:
                p.Print("x")
                if n > 0 {
                    n--
                    p = &A{}
                    goto again
                }
            }
        """)
        (call,) = _invokes(_fn(pkg, "f"))
        value = call.call.value
        assert isinstance(value, Const) and not value.is_nil()
        assert value.type is pkg.lookup("Printer").type

    def test_fallthrough_joins_next_case(self, go_tree):
        pkg = _build(go_tree, """
            func f(n int) {
                var p Printer = B{}
                switch n {
                case 0:
                    p = &A{}
                    fallthrough
                case 1:
                    p.Print("x")
                }
            }
        """)
        (call,) = _invokes(_fn(pkg, "f"))
        phi = call.call.value
        assert isinstance(phi, Phi)
        start, fell = phi.edges
        assert start.x.type is pkg.lookup("B").type
        assert isinstance(fell.x, Alloc)


def test_unknown_import_becomes_stub(go_tree, caplog):
    loader = go_tree({
        "example.com/q/q.go": """
            package q

            import (
                "fmt"
                "example.com/missing/v2"
            )

            func f() {
                fmt.Println("x")
                missing.Do()
            }
        """,
    })
    with caplog.at_level(logging.WARNING):
        pkg = loader.import_package("example.com/q")
    assert [i.path for i in pkg.imports] == ["fmt", "example.com/missing/v2"]
    assert all(i.stub for i in pkg.imports)
    assert pkg.imports[1].name == "missing"
    assert "example.com/missing/v2 not found" in caplog.text
    assert "fmt" not in caplog.text
    assert len(_of(_fn(pkg, "f"), Call)) == 2


@pytest.mark.parametrize("source", ["package broken\n\nfunc f( {\n", "package broken\n\nvar x = \n"])
def test_files_with_syntax_errors_still_build(go_tree, source):
    loader = go_tree({"example.com/broken/b.go": source})
    pkg = loader.import_package("example.com/broken")
    assert not pkg.stub
    assert pkg.files[0].has_parse_errors
