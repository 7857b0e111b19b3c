"""
Package loading: map import paths to directories, parse and build packages.

Import paths are resolved GOPATH-style against the configured source roots
(root/<import path>) and against the module path of any go.mod found above a
loaded directory. Imports that resolve to nothing on disk, the standard
library included, become stub packages with an empty scope.

Packages are built on first import and cached by import path, so every
package is built once and its imports are built before it.
"""

from __future__ import annotations

import logging
from collections import Counter
from pathlib import Path
from typing import Optional, Sequence

from tree_sitter import Parser

from ifacecheck.context import FileContext, load_contexts
from ifacecheck.parser import create_parser
from ifacecheck.program.builder import PackageBuilder, stub_package_name
from ifacecheck.program.ssa import Package
from ifacecheck.traversal import find_package_dirs, list_go_files

logger = logging.getLogger(__name__)


def read_module_path(go_mod: Path) -> Optional[str]:
    """The module path declared by a go.mod file, or None."""
    try:
        text = go_mod.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        logger.warning("Failed to read %s: %s", go_mod, e)
        return None
    for line in text.splitlines():
        line = line.split("//", 1)[0].strip()
        if line.startswith("module"):
            rest = line[len("module") :].strip().strip('"').strip("`")
            if rest:
                return rest
    return None


def is_standard_library(path: str) -> bool:
    """Standard library paths have no dot in their first element."""
    return "." not in path.split("/", 1)[0]


def primary_package_name(contexts: Sequence[FileContext]) -> str:
    """The package name declared by most files of a directory; ties go to the first file."""
    names = [c.package_name for c in contexts if c.package_name]
    if not names:
        return ""
    counts = Counter(names)
    best = max(counts.values())
    return next(n for n in names if counts[n] == best)


class Loader:
    """Loads and caches packages for one analysis run."""

    def __init__(self, src_roots: Sequence[Path] = (), parser: Optional[Parser] = None) -> None:
        self.src_roots = [Path(r).resolve() for r in src_roots]
        self.parser = parser or create_parser()
        self.packages: dict[str, Package] = {}
        self.modules: dict[str, Path] = {}
        self._loading: set[str] = set()

    def _register_module(self, directory: Path) -> Optional[tuple[str, Path]]:
        """Find the go.mod governing directory and remember its module path."""
        for candidate in [directory, *directory.parents]:
            go_mod = candidate / "go.mod"
            if go_mod.is_file():
                module = read_module_path(go_mod)
                if module is None:
                    return None
                if module not in self.modules:
                    logger.info("Module %s rooted at %s", module, candidate)
                    self.modules[module] = candidate
                return module, candidate
        return None

    def import_path_for(self, directory: Path) -> str:
        """Import path of the package in directory."""
        directory = directory.resolve()
        for root in self.src_roots:
            try:
                rel = directory.relative_to(root)
            except ValueError:
                continue
            if rel.parts:
                return rel.as_posix()
        module = self._register_module(directory)
        if module is not None:
            module_path, module_root = module
            rel = directory.relative_to(module_root)
            return module_path if not rel.parts else f"{module_path}/{rel.as_posix()}"
        return directory.name

    def find_package_dir(self, path: str) -> Optional[Path]:
        """Directory holding the package with import path, or None."""
        for root in self.src_roots:
            candidate = root / path
            if candidate.is_dir():
                return candidate
        for module, module_root in self.modules.items():
            if path == module:
                return module_root
            if path.startswith(module + "/"):
                candidate = module_root / path[len(module) + 1 :]
                if candidate.is_dir():
                    return candidate
        return None

    def stub(self, path: str) -> Package:
        if is_standard_library(path):
            logger.debug("Import %s not loaded (standard library)", path)
        else:
            logger.warning("Import %s not found on source roots; treating it as opaque", path)
        return Package(path=path, name=stub_package_name(path), stub=True)

    def import_package(self, path: str) -> Package:
        """The package with this import path, loading it on first use."""
        cached = self.packages.get(path)
        if cached is not None:
            return cached
        if path in self._loading:
            logger.warning("Import cycle through %s", path)
            return Package(path=path, name=stub_package_name(path), stub=True)
        directory = self.find_package_dir(path)
        files = list_go_files(directory) if directory is not None else []
        if directory is None or not files:
            pkg = self.stub(path)
            self.packages[path] = pkg
            return pkg
        return self._load(path, directory, files)

    def load_dir(self, directory: Path) -> Optional[Package]:
        """Load the package in directory; None when it holds no Go files."""
        directory = directory.resolve()
        path = self.import_path_for(directory)
        cached = self.packages.get(path)
        if cached is not None and not cached.stub:
            return cached
        files = list_go_files(directory)
        if not files:
            logger.warning("No Go files in %s", directory)
            return None
        return self._load(path, directory, files)

    def load_tree(self, root: Path) -> list[Package]:
        """Load every package under root, in directory order."""
        packages: list[Package] = []
        for directory in find_package_dirs(root):
            pkg = self.load_dir(directory)
            if pkg is not None:
                packages.append(pkg)
        return packages

    def _load(self, path: str, directory: Path, files: list[Path]) -> Package:
        self._loading.add(path)
        try:
            contexts = load_contexts(files, parser=self.parser)
            name = primary_package_name(contexts)
            kept = [c for c in contexts if c.package_name == name]
            for ctx in contexts:
                if ctx.package_name != name:
                    logger.warning(
                        "Skipping %s: package %s, expected %s", ctx.path, ctx.package_name or "?", name
                    )
            pkg = Package(path=path, name=name or directory.name, files=kept, directory=directory)
            PackageBuilder(pkg, kept, self.import_package).build()
        finally:
            self._loading.discard(path)
        self.packages[path] = pkg
        logger.info("Loaded %s from %s (%d file(s))", pkg, directory, len(kept))
        return pkg
