# Rule interface (abstract base class): defines the contract all rules must implement.
# Concrete rules (interface_leak) subclass Rule and implement run().

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ifacecheck.config import Config
    from ifacecheck.findings.models import Finding
    from ifacecheck.program.ssa import Package


class Rule(ABC):
    """
    Abstract base class for all static analysis rules.

    Subclasses must define:
    - id: str: unique rule identifier (e.g. "interface-leak")
    - name: str: human-readable rule name
    - run(package, config) -> list[Finding]: analyze one package and return findings

    The CLI calls run() once per loaded package; the package holds its
    imports, scope, lowered functions and the parsed source files.
    """

    id: str
    name: str

    @abstractmethod
    def run(self, package: Package, config: Config) -> list[Finding]:
        """
        Analyze one package and return any findings.

        Args:
            package: The built package. Use package.src_functions() for the
                     lowered code and package.file_for() for source snippets.
            config: Analysis config (interface to check, enabled rules).

        Returns:
            List of Finding objects, empty if no issues.
        """
        ...
