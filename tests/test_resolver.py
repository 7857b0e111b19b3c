"""Tests for origin resolution over hand-built value graphs."""

from ifacecheck.analysis.locator import InterfaceSpec
from ifacecheck.analysis.resolver import ConcreteOrigin, resolve_concrete, resolve_origin
from ifacecheck.program.ssa import (
    Alloc,
    Call,
    CallCommon,
    Const,
    Convert,
    Extract,
    Field,
    FieldAddr,
    Function,
    Global,
    MakeInterface,
    Parameter,
    Phi,
    UnOp,
)
from ifacecheck.program.types import (
    Basic,
    Interface,
    MethodDecl,
    Named,
    Pointer,
    Signature,
    Struct,
    StructField,
    Tuple,
)

STRING = Basic("string")
PRINT = Signature(params=[STRING])
IFACE = Interface(methods={"Print": PRINT})
PRINTER = Named("Printer", "example.com/fakefmt", base=IFACE)
SPEC = InterfaceSpec("Printer", "example.com/fakefmt", frozenset({"Print"}), IFACE)

LIB = Named("FakefmtPrinter", "example.com/library", base=Struct())
LIB.methods["Print"] = MethodDecl("Print", PRINT, pointer_receiver=True)

HANDLER = Named("Handler", "example.com/app", base=Struct([StructField("printer", PRINTER)]))


def _boxed(t=LIB) -> MakeInterface:
    return MakeInterface(Alloc(Pointer(t)), PRINTER)


def _call(result, *args) -> Call:
    sig = Signature(params=[a.type for a in args], results=[result])
    fn = Function("f", sig, "example.com/app")
    return Call(CallCommon(fn, list(args), signature=sig), result)


class TestResolveConcrete:
    def test_make_interface_gives_operand_type(self):
        found = resolve_concrete(_boxed(), IFACE)
        assert isinstance(found, Pointer) and found.elem is LIB

    def test_unop_and_convert_pass_through(self):
        wrapped = Convert(UnOp("*", _boxed(), PRINTER), PRINTER)
        found = resolve_concrete(wrapped, IFACE)
        assert isinstance(found, Pointer) and found.elem is LIB

    def test_field_resolves_to_base(self):
        base = _call(Pointer(HANDLER))
        load = UnOp("*", FieldAddr(base, "printer", Pointer(PRINTER)), PRINTER)
        found = resolve_concrete(load, IFACE)
        assert isinstance(found, Pointer) and found.elem is HANDLER

    def test_field_of_value(self):
        found = resolve_concrete(Field(Parameter("h", HANDLER), "printer", PRINTER), IFACE)
        assert found is HANDLER

    def test_call_with_concrete_result(self):
        assert resolve_concrete(_call(Pointer(LIB)), IFACE).elem is LIB

    def test_call_with_interface_result_uses_implementing_argument(self):
        arg = Parameter("impl", Pointer(LIB))
        found = resolve_concrete(_call(PRINTER, Parameter("n", STRING), arg), IFACE)
        assert found is arg.type

    def test_call_argument_whose_pointer_implements(self):
        arg = Parameter("impl", LIB)
        assert resolve_concrete(_call(PRINTER, arg), IFACE) is LIB

    def test_call_with_interface_result_and_no_candidate(self):
        assert resolve_concrete(_call(PRINTER, Parameter("n", STRING)), IFACE) is None

    def test_phi_first_resolving_edge_wins(self):
        other = Named("Other", "example.com/other", base=Struct())
        phi = Phi([Parameter("p", PRINTER), _boxed(), _boxed(other)], PRINTER)
        assert resolve_concrete(phi, IFACE).elem is LIB

    def test_phi_cycle_is_unresolved(self):
        phi = Phi([], PRINTER)
        phi.edges.extend([phi, Parameter("p", PRINTER)])
        assert resolve_concrete(phi, IFACE) is None

    def test_phi_cycle_then_concrete_edge(self):
        phi = Phi([], PRINTER)
        phi.edges.extend([phi, _boxed()])
        assert resolve_concrete(phi, IFACE).elem is LIB

    def test_extract_follows_tuple_producer(self):
        tup = _call(Pointer(LIB))
        assert resolve_concrete(Extract(tup, 0, PRINTER), IFACE).elem is LIB

    def test_alloc_gives_pointee(self):
        assert resolve_concrete(Alloc(Pointer(LIB)), IFACE) is LIB

    def test_opaque_interface_is_unresolved(self):
        assert resolve_concrete(Parameter("p", PRINTER), IFACE) is None
        assert resolve_concrete(Const(None, PRINTER), IFACE) is None

    def test_opaque_concrete_gives_own_type(self):
        glob = Global("g", Pointer(LIB), "example.com/app")
        assert resolve_concrete(glob, IFACE).elem is LIB


class TestResolveOrigin:
    def test_named_pointer_origin(self):
        assert resolve_origin(_boxed(), SPEC) == ConcreteOrigin("FakefmtPrinter", "example.com/library")

    def test_unresolved(self):
        assert resolve_origin(Parameter("p", PRINTER), SPEC) is None

    def test_predeclared_type_has_no_package(self):
        assert resolve_origin(MakeInterface(Const("1", Basic("int")), PRINTER), SPEC) is None

    def test_tuple_result_is_skipped(self):
        tup_call = _call(PRINTER)
        tup_call.type = Tuple([PRINTER, Basic("bool")])
        assert resolve_origin(Extract(tup_call, 0, PRINTER), SPEC) is None

    def test_interface_origin_is_rejected(self):
        arg = Parameter("other", PRINTER)
        assert resolve_origin(_call(PRINTER, arg), SPEC) is None

    def test_each_trace_starts_fresh(self):
        value = _boxed()
        assert resolve_origin(value, SPEC) is not None
        assert resolve_origin(value, SPEC) is not None
