# Interface lookup: resolve the configured (package identifier, interface name)
# pair against the imports of the analysed package, then its own scope.

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from ifacecheck.program.ssa import Package
from ifacecheck.program.types import Interface, TypeName

logger = logging.getLogger(__name__)


class InterfaceNotFoundError(LookupError):
    """The configured interface exists neither in an import nor in the package itself."""

    def __init__(self, name: str, package_ident: str) -> None:
        self.name = name
        self.package_ident = package_ident
        super().__init__(f'could not find interface {name} in "{package_ident}"')


@dataclass(frozen=True)
class InterfaceSpec:
    """The located interface: where it is declared and which method names it covers."""

    name: str
    package_path: str
    method_names: frozenset[str]
    interface: Interface = field(compare=False, repr=False)


def import_matches(imported: Package, package_ident: str) -> bool:
    """
    True if an import is the one the identifier refers to.

    Matches on the package name, on the last path element, or on the full path.
    """
    path = imported.path
    return imported.name == package_ident or path.endswith("/" + package_ident) or path == package_ident


def lookup_interface(package: Package, name: str, exported_only: bool) -> Optional[Interface]:
    """The interface type declared as name in package's scope, or None."""
    obj = package.lookup(name)
    if not isinstance(obj, TypeName):
        return None
    if exported_only and not obj.exported:
        return None
    under = obj.type.underlying()
    if isinstance(under, Interface):
        return under
    return None


def index_methods(iface: Interface) -> frozenset[str]:
    """Every method name of iface, embedded interfaces included."""
    return frozenset(iface.method_names())


def locate_interface(package: Package, package_ident: str, interface_name: str) -> InterfaceSpec:
    """
    Find the configured interface for one analysed package.

    Imports are searched in declaration order and the first one that matches
    and declares the interface wins. The package's own scope is searched last.

    Raises:
        InterfaceNotFoundError: if no candidate declares it.
    """
    for imported in package.imports:
        if not import_matches(imported, package_ident):
            continue
        iface = lookup_interface(imported, interface_name, exported_only=True)
        if iface is not None:
            logger.debug("Located %s in import %s", interface_name, imported.path)
            return InterfaceSpec(interface_name, imported.path, index_methods(iface), iface)
        logger.debug("Import %s matches %s but does not declare %s", imported.path, package_ident, interface_name)

    iface = lookup_interface(package, interface_name, exported_only=False)
    if iface is not None:
        logger.debug("Located %s in %s itself", interface_name, package.path)
        return InterfaceSpec(interface_name, package.path, index_methods(iface), iface)

    raise InterfaceNotFoundError(interface_name, package_ident)
