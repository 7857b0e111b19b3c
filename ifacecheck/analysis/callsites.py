# Call-site scanning: find dynamic-dispatch calls to methods of the located interface.

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Iterator, Optional

from ifacecheck.analysis.locator import InterfaceSpec
from ifacecheck.program.ssa import Call, Function, Instruction, Position, Value

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CallSite:
    """An invoke-mode call whose method belongs to the located interface."""

    pos: Optional[Position]
    method: str
    receiver: Value
    function: Function


def is_dispatch_call(instr: Instruction, spec: InterfaceSpec) -> bool:
    """True for a Call invoking one of spec's methods through an interface value."""
    return isinstance(instr, Call) and instr.call.is_invoke() and instr.call.method in spec.method_names


def scan_function(fn: Function, spec: InterfaceSpec) -> Iterator[CallSite]:
    for instr in fn.instructions():
        if not is_dispatch_call(instr, spec):
            continue
        assert isinstance(instr, Call) and instr.call.method is not None
        yield CallSite(instr.pos, instr.call.method, instr.call.value, fn)


def scan_call_sites(functions: Iterable[Function], spec: InterfaceSpec) -> list[CallSite]:
    """Call sites in function order, then instruction order within each function."""
    sites: list[CallSite] = []
    for fn in functions:
        found = list(scan_function(fn, spec))
        if found:
            logger.debug("%s: %d call site(s) of %s", fn.full_name(), len(found), spec.name)
        sites.extend(found)
    return sites
