"""Tests for the value-graph IR: value construction, functions, blocks and packages."""

import pytest

from ifacecheck.program.ssa import (
    Alloc,
    Builtin,
    Const,
    Function,
    Global,
    Package,
    Parameter,
    Position,
)
from ifacecheck.program.types import INVALID, Basic, Pointer, Signature

INT = Basic("int")


def test_global_is_address_of_package_variable():
    glob = Global("Default", Pointer(INT), "example.com/p", Position("p.go", 3, 5))
    assert glob.name == "Default"
    assert glob.package_path == "example.com/p"
    assert isinstance(glob.type, Pointer) and glob.type.elem is INT
    assert str(glob.pos) == "p.go:3:5"


def test_values_require_a_type():
    with pytest.raises(TypeError):
        Parameter("x")
    assert Parameter("x", INT).type is INT
    assert Builtin("len").type is INVALID


def test_nil_constant():
    assert Const(None, INT).is_nil()
    assert not Const("0", INT).is_nil()


def test_blocks_collect_instructions_in_order():
    fn = Function(name="f", signature=Signature(), package_path="example.com/p")
    entry = fn.new_block("entry")
    done = fn.new_block("done")
    first = entry.emit(Alloc(Pointer(INT)))
    second = done.emit(Alloc(Pointer(INT), comment="x"))
    assert [b.index for b in fn.blocks] == [0, 1]
    assert first.block is entry and second.block is done
    assert list(fn.instructions()) == [first, second]
    assert first.elem is INT


def test_function_names_and_closures():
    fn = Function(name="f", signature=Signature(), package_path="example.com/p")
    anon = Function(name="func1", signature=Signature(), package_path="example.com/p", parent=fn)
    fn.anon_funcs.append(anon)
    pkg = Package(path="example.com/p", name="p", functions=[fn])
    assert fn.full_name() == "example.com/p.f"
    assert anon.full_name() == "example.com/p.f$func1"
    assert fn.type is fn.signature
    assert pkg.src_functions() == [fn, anon]
    assert pkg.lookup("f") is None
