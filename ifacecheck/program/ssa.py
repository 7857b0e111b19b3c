"""
Value graph of a lowered Go package.

Every function is a list of basic blocks, every block a list of
instructions. Instructions that produce a value are Values themselves, so an
operand refers directly to the instruction that produced it and the
definition chain of any value can be walked backwards.

The value kinds form a closed set:

    MakeInterface          concrete value boxed into an interface
    UnOp                   dereference (*x), address-of (&x), other unary ops
    Field / FieldAddr      struct field of a value / of a pointer
    Convert                type conversion, including interface to interface
    Call                   static call, call through a func value, or invoke
    Phi                    control-flow join
    Extract                one result of a multi-value call
    Alloc                  allocation of a composite literal or new(T)

and the opaque producers: Parameter, FreeVar, Global, Const, Function,
Builtin, MakeClosure, BinOp, TypeAssert, Index, Slice, Lookup.

Values compare by identity, so they can be used in visited sets.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Iterator, Optional, Union

from ifacecheck.program.types import INVALID, Pointer, Signature, Type, TypeName

if TYPE_CHECKING:
    from ifacecheck.context import FileContext


@dataclass(frozen=True, order=True)
class Position:
    """1-based source position."""

    filename: str
    line: int
    column: int

    def __str__(self) -> str:
        return f"{self.filename}:{self.line}:{self.column}"


class Value:
    """Anything that can be used as an operand."""

    type: Type
    pos: Optional[Position] = None

    def operands(self) -> list[Value]:
        return []


class Instruction:
    """Marker for values and statements that live in a basic block."""

    block: Optional[BasicBlock] = None


# Opaque producers


@dataclass(eq=False)
class Parameter(Value):
    name: str
    type: Type
    pos: Optional[Position] = None


@dataclass(eq=False)
class FreeVar(Value):
    """A variable captured by a closure from its enclosing function."""

    name: str
    type: Type
    pos: Optional[Position] = None


@dataclass(eq=False)
class Global(Value):
    """Address of a package-level variable; its type is a pointer to the declared type."""

    name: str
    type: Type
    package_path: str
    pos: Optional[Position] = None


@dataclass(eq=False)
class Const(Value):
    value: Any
    type: Type
    pos: Optional[Position] = None

    def is_nil(self) -> bool:
        return self.value is None


@dataclass(eq=False)
class Builtin(Value):
    name: str
    type: Type = INVALID
    pos: Optional[Position] = None


# Instructions producing values


@dataclass(eq=False)
class Alloc(Value, Instruction):
    """Allocates a variable of type elem; its own type is *elem."""

    type: Type
    comment: str = ""
    pos: Optional[Position] = None

    @property
    def elem(self) -> Type:
        if isinstance(self.type, Pointer):
            return self.type.elem
        return self.type


@dataclass(eq=False)
class MakeInterface(Value, Instruction):
    x: Value
    type: Type
    pos: Optional[Position] = None

    def operands(self) -> list[Value]:
        return [self.x]


@dataclass(eq=False)
class UnOp(Value, Instruction):
    op: str
    x: Value
    type: Type
    pos: Optional[Position] = None

    def operands(self) -> list[Value]:
        return [self.x]


@dataclass(eq=False)
class BinOp(Value, Instruction):
    op: str
    x: Value
    y: Value
    type: Type
    pos: Optional[Position] = None

    def operands(self) -> list[Value]:
        return [self.x, self.y]


@dataclass(eq=False)
class Field(Value, Instruction):
    x: Value
    field: str
    type: Type
    pos: Optional[Position] = None

    def operands(self) -> list[Value]:
        return [self.x]


@dataclass(eq=False)
class FieldAddr(Value, Instruction):
    x: Value
    field: str
    type: Type
    pos: Optional[Position] = None

    def operands(self) -> list[Value]:
        return [self.x]


@dataclass(eq=False)
class Convert(Value, Instruction):
    x: Value
    type: Type
    pos: Optional[Position] = None

    def operands(self) -> list[Value]:
        return [self.x]


@dataclass(eq=False)
class TypeAssert(Value, Instruction):
    x: Value
    asserted: Type
    type: Type
    comma_ok: bool = False
    pos: Optional[Position] = None

    def operands(self) -> list[Value]:
        return [self.x]


@dataclass(eq=False)
class Index(Value, Instruction):
    x: Value
    index: Value
    type: Type
    pos: Optional[Position] = None

    def operands(self) -> list[Value]:
        return [self.x, self.index]


@dataclass(eq=False)
class Lookup(Value, Instruction):
    """Map lookup m[k]."""

    x: Value
    index: Value
    type: Type
    comma_ok: bool = False
    pos: Optional[Position] = None

    def operands(self) -> list[Value]:
        return [self.x, self.index]


@dataclass(eq=False)
class Slice(Value, Instruction):
    x: Value
    type: Type
    pos: Optional[Position] = None

    def operands(self) -> list[Value]:
        return [self.x]


@dataclass(eq=False)
class MakeClosure(Value, Instruction):
    fn: Function
    type: Type
    pos: Optional[Position] = None


@dataclass(eq=False)
class CallCommon:
    """
    The callee part of a call.

    In invoke mode (method is set) value is the interface-typed receiver and
    args excludes it. Otherwise value is the callee (a Function, Builtin or
    any func-typed value) and, for static method calls, args[0] is the receiver.
    """

    value: Value
    args: list[Value] = field(default_factory=list)
    method: Optional[str] = None
    signature: Optional[Signature] = None

    def is_invoke(self) -> bool:
        return self.method is not None

    def static_callee(self) -> Optional[Function]:
        if self.is_invoke():
            return None
        if isinstance(self.value, Function):
            return self.value
        return None


@dataclass(eq=False)
class Call(Value, Instruction):
    call: CallCommon
    type: Type
    pos: Optional[Position] = None

    def operands(self) -> list[Value]:
        return [self.call.value] + list(self.call.args)


@dataclass(eq=False)
class Phi(Value, Instruction):
    edges: list[Value]
    type: Type
    comment: str = ""
    pos: Optional[Position] = None

    def operands(self) -> list[Value]:
        return list(self.edges)


@dataclass(eq=False)
class Extract(Value, Instruction):
    tuple: Value
    index: int
    type: Type
    pos: Optional[Position] = None

    def operands(self) -> list[Value]:
        return [self.tuple]


# Statements


@dataclass(eq=False)
class Store(Instruction):
    addr: Value
    val: Value
    pos: Optional[Position] = None


@dataclass(eq=False)
class Return(Instruction):
    results: list[Value] = field(default_factory=list)
    pos: Optional[Position] = None


@dataclass(eq=False)
class BasicBlock:
    index: int
    comment: str = ""
    instrs: list[Instruction] = field(default_factory=list)

    def emit(self, instr: Instruction) -> Instruction:
        instr.block = self
        self.instrs.append(instr)
        return instr


@dataclass(eq=False)
class Function(Value):
    """
    A source function, method, or closure.

    receiver_type is set for methods; parent is set for closures.
    """

    name: str
    signature: Signature
    package_path: str
    pos: Optional[Position] = None
    receiver_type: Optional[Type] = None
    parent: Optional[Function] = None
    params: list[Parameter] = field(default_factory=list)
    blocks: list[BasicBlock] = field(default_factory=list)
    anon_funcs: list[Function] = field(default_factory=list)
    synthetic: str = ""

    @property
    def type(self) -> Type:  # type: ignore[override]
        return self.signature

    def full_name(self) -> str:
        if self.receiver_type is not None:
            return f"({self.receiver_type}).{self.name}"
        if self.parent is not None:
            return f"{self.parent.full_name()}${self.name}"
        return f"{self.package_path}.{self.name}"

    def new_block(self, comment: str = "") -> BasicBlock:
        block = BasicBlock(index=len(self.blocks), comment=comment)
        self.blocks.append(block)
        return block

    def instructions(self) -> Iterator[Instruction]:
        for block in self.blocks:
            yield from block.instrs


@dataclass(eq=False)
class Package:
    """
    A loaded Go package: its identity, import list in declaration order,
    package-level scope, and the functions lowered from its source files.

    Stub packages stand in for imports that could not be found on disk; they
    have an empty scope and no functions.
    """

    path: str
    name: str
    imports: list[Package] = field(default_factory=list)
    scope: dict[str, Union[TypeName, Function, Global, Const]] = field(default_factory=dict)
    functions: list[Function] = field(default_factory=list)
    files: list[FileContext] = field(default_factory=list)
    directory: Optional[Path] = None
    stub: bool = False

    def lookup(self, name: str) -> Optional[Union[TypeName, Function, Global, Const]]:
        return self.scope.get(name)

    def src_functions(self) -> list[Function]:
        """Source functions and methods followed by their closures, recursively."""
        out: list[Function] = []

        def add(fn: Function) -> None:
            out.append(fn)
            for anon in fn.anon_funcs:
                add(anon)

        for fn in self.functions:
            add(fn)
        return out

    def file_for(self, filename: str) -> Optional[FileContext]:
        for ctx in self.files:
            if str(ctx.path) == filename:
                return ctx
        return None

    def __str__(self) -> str:
        return f"package {self.name} ({self.path!r})"
