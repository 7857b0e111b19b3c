# Interface leak detection: reports calls through the configured interface whose
# concrete receiver type is declared outside the interface's own package.

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from ifacecheck.analysis.callsites import CallSite, scan_call_sites
from ifacecheck.analysis.locator import InterfaceSpec, locate_interface
from ifacecheck.analysis.resolver import ConcreteOrigin, resolve_origin
from ifacecheck.findings.models import Finding, Location, Origin
from ifacecheck.program.ssa import Package
from ifacecheck.rules.base import Rule

if TYPE_CHECKING:
    from ifacecheck.config import Config

logger = logging.getLogger(__name__)


def leak_message(method: str, origin: ConcreteOrigin) -> str:
    return f'call to a provided interface found (method "{method}" on type {origin.type_name} from pkg "{origin.package_path}")'


class InterfaceLeakRule(Rule):
    """Flags dynamic calls through an interface backed by a type from another package."""

    id = "interface-leak"
    name = "Interface implemented outside its package"

    def prepare(self, package: Package, config: Config) -> InterfaceSpec:
        """Locate the configured interface for package; raises InterfaceNotFoundError."""
        return locate_interface(package, config.interface_package, config.interface_name)

    def check(self, package: Package, spec: InterfaceSpec) -> list[Finding]:
        findings: list[Finding] = []
        sites = scan_call_sites(package.src_functions(), spec)
        for site in sites:
            origin = resolve_origin(site.receiver, spec)
            if origin is None:
                logger.debug("Unresolved receiver of %s at %s", site.method, site.pos)
                continue
            if origin.package_path == spec.package_path:
                continue
            finding = self._finding(package, site, origin)
            if finding is not None:
                findings.append(finding)
        findings.sort(key=lambda f: (str(f.location.path), f.location.line, f.location.column))
        logger.info(
            "%s: %d call site(s) of %s.%s, %d finding(s)",
            package.path,
            len(sites),
            spec.package_path,
            spec.name,
            len(findings),
        )
        return findings

    def run(self, package: Package, config: Config) -> list[Finding]:
        return self.check(package, self.prepare(package, config))

    def _finding(self, package: Package, site: CallSite, origin: ConcreteOrigin) -> Finding | None:
        if site.pos is None:
            logger.debug("Call site of %s in %s has no position", site.method, site.function.full_name())
            return None
        ctx = package.file_for(site.pos.filename)
        snippet = ctx.line_text(site.pos.line) if ctx is not None else None
        return Finding(
            rule_id=self.id,
            message=leak_message(site.method, origin),
            location=Location(
                path=Path(site.pos.filename),
                line=site.pos.line,
                column=site.pos.column,
                snippet=snippet,
            ),
            method=site.method,
            origin=Origin(type_name=origin.type_name, package_path=origin.package_path),
        )
