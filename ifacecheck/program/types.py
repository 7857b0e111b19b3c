"""
Go type model used by the program representation.

Only what the analysis reads is modelled: named types with their declaring
package and method declarations, pointers, structs, interfaces, signatures
and tuples. Composite forms the analysis never looks through (slices, maps,
channels, arrays) keep their element types so indexing can be typed.

Method sets and interface satisfaction compare method names only.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional


class Type:
    """Base class for all types."""

    def underlying(self) -> Type:
        return self

    def __str__(self) -> str:  # pragma: no cover - overridden
        return type(self).__name__


@dataclass(eq=False)
class Basic(Type):
    """Predeclared scalar types, untyped nil, and types the front-end could not resolve."""

    name: str

    def __str__(self) -> str:
        return self.name


@dataclass(eq=False)
class Pointer(Type):
    elem: Type

    def __str__(self) -> str:
        return f"*{self.elem}"


@dataclass(eq=False)
class Slice(Type):
    elem: Type

    def __str__(self) -> str:
        return f"[]{self.elem}"


@dataclass(eq=False)
class Array(Type):
    elem: Type
    length: str = ""

    def __str__(self) -> str:
        return f"[{self.length}]{self.elem}"


@dataclass(eq=False)
class Map(Type):
    key: Type
    elem: Type

    def __str__(self) -> str:
        return f"map[{self.key}]{self.elem}"


@dataclass(eq=False)
class Chan(Type):
    elem: Type

    def __str__(self) -> str:
        return f"chan {self.elem}"


@dataclass(eq=False)
class Tuple(Type):
    types: list[Type] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.types)

    def __str__(self) -> str:
        return "(" + ", ".join(str(t) for t in self.types) + ")"


@dataclass(eq=False)
class Signature(Type):
    params: list[Type] = field(default_factory=list)
    results: list[Type] = field(default_factory=list)
    variadic: bool = False

    def result_type(self) -> Type:
        """Static type of a call: the single result, or a tuple for zero or several."""
        if len(self.results) == 1:
            return self.results[0]
        return Tuple(list(self.results))

    def __str__(self) -> str:
        params = ", ".join(str(t) for t in self.params)
        if len(self.results) == 1:
            return f"func({params}) {self.results[0]}"
        if self.results:
            return f"func({params}) ({', '.join(str(t) for t in self.results)})"
        return f"func({params})"


@dataclass(eq=False)
class StructField:
    name: str
    type: Type
    embedded: bool = False


@dataclass(eq=False)
class Struct(Type):
    fields: list[StructField] = field(default_factory=list)

    def lookup(self, name: str) -> Optional[StructField]:
        for f in self.fields:
            if f.name == name:
                return f
        return None

    def __str__(self) -> str:
        return "struct{" + "; ".join(f"{f.name} {f.type}" for f in self.fields) + "}"


@dataclass(eq=False)
class Interface(Type):
    """
    An interface type.

    methods holds the explicitly declared methods in declaration order;
    embedded holds embedded interface types, flattened by method_names().
    """

    methods: dict[str, Signature] = field(default_factory=dict)
    embedded: list[Type] = field(default_factory=list)

    def method_names(self) -> list[str]:
        names: list[str] = []
        self._collect(names, set())
        return names

    def _collect(self, names: list[str], seen: set[int]) -> None:
        if id(self) in seen:
            return
        seen.add(id(self))
        for name in self.methods:
            if name not in names:
                names.append(name)
        for emb in self.embedded:
            under = emb.underlying()
            if isinstance(under, Interface):
                under._collect(names, seen)

    def lookup(self, name: str) -> Optional[Signature]:
        if name in self.methods:
            return self.methods[name]
        for emb in self.embedded:
            under = emb.underlying()
            if isinstance(under, Interface) and under is not self:
                sig = under.lookup(name)
                if sig is not None:
                    return sig
        return None

    def __str__(self) -> str:
        return "interface{" + "; ".join(self.method_names()) + "}"


@dataclass(eq=False)
class MethodDecl:
    """A method declared on a named type; function is the lowered body once built."""

    name: str
    signature: Signature
    pointer_receiver: bool
    function: Any = None


@dataclass(eq=False)
class Named(Type):
    """
    A defined type. package_path is None for predeclared names such as error.

    The underlying type is filled in after all type names of a package are
    declared, so mutually recursive declarations resolve.
    """

    name: str
    package_path: Optional[str]
    base: Optional[Type] = None
    methods: dict[str, MethodDecl] = field(default_factory=dict)

    def underlying(self) -> Type:
        t: Optional[Type] = self.base
        seen = 0
        while isinstance(t, Named) and seen < 32:
            t = t.base
            seen += 1
        if t is None or isinstance(t, Named):
            return INVALID
        return t

    def __str__(self) -> str:
        if self.package_path:
            return f"{self.package_path}.{self.name}"
        return self.name


@dataclass(eq=False)
class TypeName:
    """A type declaration in a package scope."""

    name: str
    type: Type
    package_path: Optional[str]

    @property
    def exported(self) -> bool:
        return self.name[:1].isupper()


INVALID = Basic("invalid type")
UNTYPED_NIL = Basic("untyped nil")


def is_interface(t: Type) -> bool:
    """True if t's underlying type is an interface."""
    return isinstance(t.underlying(), Interface)


def deref(t: Type) -> Type:
    """The element type if t is a pointer, else t."""
    if isinstance(t, Pointer):
        return t.elem
    return t


def deref_named(t: Type) -> Optional[Named]:
    """Return the named type behind t or *t, or None for unnamed types."""
    t = deref(t)
    if isinstance(t, Named):
        return t
    return None


def method_set(t: Type) -> set[str]:
    """
    Names of the methods callable on a value of type t.

    Value receivers are in the set of T, all receivers in the set of *T.
    Methods promoted through embedded struct fields are included.
    """
    return _method_set(t, 0)


def _method_set(t: Type, depth: int) -> set[str]:
    if depth > 8:
        return set()
    if is_interface(t):
        return set(t.underlying().method_names())  # type: ignore[attr-defined]
    pointer = isinstance(t, Pointer)
    named = deref_named(t)
    names: set[str] = set()
    if named is not None:
        for m in named.methods.values():
            if pointer or not m.pointer_receiver:
                names.add(m.name)
    under = deref(t).underlying()
    if isinstance(under, Struct):
        for f in under.fields:
            if not f.embedded:
                continue
            inner = Pointer(f.type) if pointer and not isinstance(f.type, Pointer) else f.type
            names |= _method_set(inner, depth + 1)
    return names


def implements(t: Type, iface: Interface) -> bool:
    """True if every method name of iface is in the method set of t."""
    required = iface.method_names()
    if not required:
        return True
    have = method_set(t)
    return all(name in have for name in required)


def embedded_path(t: Type, name: str, depth: int = 0) -> Optional[list[StructField]]:
    """The chain of fields leading to field name, outermost first."""
    under = deref(t).underlying()
    if not isinstance(under, Struct) or depth > 8:
        return None
    direct = under.lookup(name)
    if direct is not None:
        return [direct]
    for f in under.fields:
        if f.embedded:
            rest = embedded_path(f.type, name, depth + 1)
            if rest is not None:
                return [f] + rest
    return None


def lookup_method(t: Type, name: str, depth: int = 0) -> Optional[MethodDecl]:
    """Find a concrete method declaration on t, *t, or a promoted embedded field."""
    named = deref_named(t)
    if named is not None and name in named.methods:
        return named.methods[name]
    under = deref(t).underlying()
    if not isinstance(under, Struct) or depth > 8:
        return None
    for f in under.fields:
        if f.embedded:
            found = lookup_method(f.type, name, depth + 1)
            if found is not None:
                return found
    return None
