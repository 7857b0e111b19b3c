"""
Origin resolution: trace an interface-typed value back to the concrete type behind it.

The trace walks the definition chain of the value one node at a time:

    MakeInterface        the static type of the boxed operand
    UnOp                 the operand (load, address-of, receive ...)
    Field / FieldAddr    the base struct value; field identity is not tracked
    Convert              the operand
    Call                 a non-interface result type, else the first argument
                         that implements the interface
    Phi                  the first incoming edge that resolves
    Extract              the tuple-producing value
    Alloc                the allocated type

Any other value contributes its own static type unless that is still an
interface, in which case nothing is known. A value seen twice on one trace
resolves to nothing, which ends cycles through loop Phis.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from ifacecheck.analysis.locator import InterfaceSpec
from ifacecheck.program.ssa import (
    Alloc,
    Call,
    Convert,
    Extract,
    Field,
    FieldAddr,
    MakeInterface,
    Phi,
    UnOp,
    Value,
)
from ifacecheck.program.types import Interface, Pointer, Type, deref_named, implements, is_interface

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConcreteOrigin:
    """Named concrete type behind an interface value."""

    type_name: str
    package_path: str


def resolve_concrete(value: Value, iface: Interface, visited: Optional[set[int]] = None) -> Optional[Type]:
    """Static type of the concrete value behind value, or None if it cannot be told."""
    if visited is None:
        visited = set()
    if id(value) in visited:
        return None
    visited.add(id(value))

    if isinstance(value, MakeInterface):
        return value.x.type
    if isinstance(value, (UnOp, Field, FieldAddr, Convert)):
        return resolve_concrete(value.x, iface, visited)
    if isinstance(value, Call):
        if not is_interface(value.type):
            return value.type
        for arg in value.call.args:
            if implements(arg.type, iface) or implements(Pointer(arg.type), iface):
                return arg.type
        return None
    if isinstance(value, Phi):
        for edge in value.edges:
            found = resolve_concrete(edge, iface, visited)
            if found is not None:
                return found
        return None
    if isinstance(value, Extract):
        return resolve_concrete(value.tuple, iface, visited)
    if isinstance(value, Alloc):
        return value.elem
    if is_interface(value.type):
        return None
    return value.type


def resolve_origin(value: Value, spec: InterfaceSpec) -> Optional[ConcreteOrigin]:
    """
    Named type and declaring package behind value.

    Returns None when the trace is inconclusive or ends in a type that has no
    declaring package (predeclared, unnamed, tuple) or is itself an interface.
    """
    concrete = resolve_concrete(value, spec.interface)
    if concrete is None:
        return None
    named = deref_named(concrete)
    if named is None or not named.package_path or is_interface(named):
        logger.debug("Origin %s of %s has no concrete declaring package", concrete, type(value).__name__)
        return None
    return ConcreteOrigin(named.name, named.package_path)
