from __future__ import annotations

"""
Typer CLI entry point and orchestration of the analysis pipeline.

The CLI:
- Accepts a Go file or a directory (every package below it is analyzed)
- Loads the packages, resolving imports through --src-root directories,
  $GOPATH/src and go.mod module paths
- Runs all enabled rules from config.py on each loaded package
- Prints findings as "file:line:col: SEVERITY [rule] message", or with rich
  formatting when --pretty is given

Exit status is 1 when there are findings and 2 when the configured interface
cannot be found.
"""

import logging
import os
from pathlib import Path
from typing import List, Optional, Sequence

import typer

from ifacecheck.analysis.locator import InterfaceNotFoundError
from ifacecheck.config import Config, ConfigError, decode_settings, get_enabled_rules, load_config_file
from ifacecheck.findings.models import Finding
from ifacecheck.program.loader import Loader
from ifacecheck.program.ssa import Package
from ifacecheck.reporting.console import print_findings

logger = logging.getLogger(__name__)

app = typer.Typer(help="ifacecheck - report Go interface calls backed by types from other packages.")


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def _gopath_roots() -> List[Path]:
    """$GOPATH/src of every GOPATH entry that exists."""
    roots: List[Path] = []
    for entry in os.environ.get("GOPATH", "").split(os.pathsep):
        if entry and (Path(entry) / "src").is_dir():
            roots.append(Path(entry) / "src")
    return roots


def _build_config(
    interface_package: Optional[str],
    interface_name: Optional[str],
    config_file: Optional[Path],
) -> Config:
    """Merge the config file (if any) with CLI flags; flags win."""
    raw: dict[str, str] = {}
    if config_file is not None:
        base = load_config_file(config_file)
        raw = {"interface_package": base.interface_package, "interface_name": base.interface_name}
    if interface_package is not None:
        raw["interface_package"] = interface_package
    if interface_name is not None:
        raw["interface_name"] = interface_name
    return decode_settings(raw)


def _collect_packages(loader: Loader, target: Path) -> List[Package]:
    """
    Resolve a target path into the packages to analyze.

    - If target is a .go file, load the package of its directory
    - If target is a directory, load every package below it
    - Otherwise, exit with an error.
    """
    if target.is_file():
        if target.suffix.lower() != ".go":
            raise typer.BadParameter(f"Target file must have .go extension, got: {target}")
        pkg = loader.load_dir(target.parent)
        return [pkg] if pkg is not None else []

    if target.is_dir():
        packages = loader.load_tree(target)
        if not packages:
            logger.warning("No Go packages found under %s", target)
        return packages

    raise typer.BadParameter(f"Target path is neither a file nor a directory: {target}")


def _print_findings(findings: Sequence[Finding]) -> None:
    """Print findings in a simple, grep-like format."""
    if not findings:
        typer.echo("No findings.")
        return

    for f in findings:
        loc = f.location
        typer.echo(
            f"{loc.path}:{loc.line}:{loc.column}: {f.severity.upper()} "
            f"[{f.rule_id}] {f.message}"
        )


@app.command()
def analyze(
    target: Path = typer.Argument(
        ...,
        exists=True,
        readable=True,
        resolve_path=True,
        help="Go file or directory to analyze.",
    ),
    interface_package: Optional[str] = typer.Option(
        None,
        "--interface-package",
        "-p",
        help="Package declaring the interface: name, import path suffix or full import path.",
    ),
    interface_name: Optional[str] = typer.Option(
        None,
        "--interface-name",
        "-i",
        help="Name of the interface to check.",
    ),
    config_file: Optional[Path] = typer.Option(
        None,
        "--config",
        exists=True,
        dir_okay=False,
        help="TOML file with interface_package and interface_name.",
    ),
    src_roots: List[Path] = typer.Option(
        [],
        "--src-root",
        help="GOPATH-style source root; import path P is looked up as ROOT/P. Repeatable.",
    ),
    pretty: bool = typer.Option(False, "--pretty", help="Rich terminal output."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging."),
) -> None:
    """
    Analyze a Go file's package or all packages under a directory.

    Uses the rules registered in config.get_default_config().
    """
    _configure_logging(verbose)
    try:
        config = _build_config(interface_package, interface_name, config_file)
    except ConfigError as exc:
        raise typer.BadParameter(str(exc)) from exc

    loader = Loader(list(src_roots) + _gopath_roots())
    packages = _collect_packages(loader, target)

    all_findings: List[Finding] = []
    rules = list(get_enabled_rules(config))

    if not rules:
        typer.echo("No rules are enabled in the current configuration.")
        raise typer.Exit(code=1)

    for pkg in packages:
        for rule in rules:
            try:
                rule_findings = rule.run(pkg, config)
            except InterfaceNotFoundError as exc:
                typer.echo(f"ifacecheck: {pkg.path}: {exc}", err=True)
                raise typer.Exit(code=2)
            except Exception as exc:  # pragma: no cover
                logger.exception("Rule %s failed on %s: %s", rule.id, pkg.path, exc)
                continue
            all_findings.extend(rule_findings)

    if pretty:
        analyzed = [ctx.path for pkg in packages for ctx in pkg.files]
        print_findings(all_findings, analyzed_files=analyzed, verbose=verbose)
    else:
        _print_findings(all_findings)

    if all_findings:
        raise typer.Exit(code=1)


def main() -> None:
    """Entry point for `python -m ifacecheck.main`."""
    app()


if __name__ == "__main__":
    main()
