# Per-file analysis context: store file path, source code, AST, package clause
# and import specs. Handles reading/parsing Go files, error handling for
# unreadable/malformed files, and logging of node/function counts.

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from tree_sitter import Node as TSNode
from tree_sitter import Parser, Tree

from ifacecheck.parser import create_parser, node_text, parse_bytes, unquote

logger = logging.getLogger(__name__)

_FUNCTION_NODES = frozenset({"function_declaration", "method_declaration", "func_literal"})


@dataclass(frozen=True)
class ImportSpec:
    """One import of a file. name is the explicit alias ("." and "_" included), or None."""

    path: str
    name: Optional[str]
    line: int


def _count_nodes(node: TSNode) -> int:
    """Count all descendants of node (including node itself)."""
    count = 1
    for child in node.children:
        count += _count_nodes(child)
    return count


def _count_functions(root: TSNode) -> int:
    """Count function, method and closure nodes under root."""
    count = 0
    if root.type in _FUNCTION_NODES:
        count += 1
    for child in root.children:
        count += _count_functions(child)
    return count


def count_tree_stats(root: TSNode) -> tuple[int, int]:
    """
    Return (total node count, function count) for the tree.

    Functions are declarations, methods and function literals.
    """
    return _count_nodes(root), _count_functions(root)


def _read_package_name(root: TSNode) -> str:
    for child in root.named_children:
        if child.type == "package_clause":
            for sub in child.named_children:
                if sub.type == "package_identifier":
                    return node_text(sub)
    return ""


def _read_imports(root: TSNode) -> list[ImportSpec]:
    specs: list[ImportSpec] = []
    for child in root.named_children:
        if child.type != "import_declaration":
            continue
        pending = list(child.named_children)
        while pending:
            node = pending.pop(0)
            if node.type == "import_spec_list":
                pending = list(node.named_children) + pending
                continue
            if node.type != "import_spec":
                continue
            path_node = node.child_by_field_name("path")
            name_node = node.child_by_field_name("name")
            specs.append(
                ImportSpec(
                    path=unquote(node_text(path_node)),
                    name=node_text(name_node) if name_node is not None else None,
                    line=node.start_point[0] + 1,
                )
            )
    return specs


class FileContext:
    """
    Per-file state for static analysis: path, raw source bytes, and AST.

    package_name and imports are read from the tree once at construction.
    """

    def __init__(
        self,
        path: Path,
        source: bytes,
        tree: Tree,
        *,
        has_parse_errors: bool = False,
    ) -> None:
        self.path = path
        self.source = source
        self.tree = tree
        self.has_parse_errors = has_parse_errors
        self.package_name = _read_package_name(tree.root_node)
        self.imports = _read_imports(tree.root_node)

    @property
    def root_node(self) -> TSNode:
        """Convenience access to the AST root."""
        return self.tree.root_node

    def line_text(self, line: int) -> Optional[str]:
        """Source text of a 1-based line without its newline, or None if out of range."""
        lines = self.source.decode("utf-8", errors="replace").splitlines()
        if 1 <= line <= len(lines):
            return lines[line - 1]
        return None


def get_line_col(node: TSNode, one_based: bool = True) -> tuple[int, int]:
    """
    (line, column) where node starts; 1-based unless one_based is False.

    Diagnostics report positions the way the go tool does: 1-based, column in bytes.
    """
    row, col = node.start_point
    if one_based:
        return row + 1, col + 1
    return row, col


def create_context(
    path: Path,
    parser: Optional[Parser] = None,
) -> Optional[FileContext]:
    """
    Read a Go file and parse it into a FileContext.

    - Unreadable file (permission, missing): returns None and logs error.
    - Malformed Go (syntax errors): still returns a FileContext and sets
      has_parse_errors=True; the builder lowers whatever parsed.
    """
    if parser is None:
        parser = create_parser()

    try:
        source = path.read_bytes()
    except OSError as e:
        logger.error("Failed to read file %s: %s", path, e)
        return None

    tree = parse_bytes(source, parser=parser)
    has_errors = tree.root_node.has_error
    if has_errors:
        logger.warning("File %s parsed with syntax errors; AST may be incomplete", path)

    node_count, func_count = count_tree_stats(tree.root_node)
    ctx = FileContext(path=path, source=source, tree=tree, has_parse_errors=has_errors)
    logger.info(
        "Parsed %s (package %s): %d nodes, %d function(s), %d import(s)%s",
        path,
        ctx.package_name or "?",
        node_count,
        func_count,
        len(ctx.imports),
        " (with parse errors)" if has_errors else "",
    )
    return ctx


def load_contexts(
    paths: list[Path],
    parser: Optional[Parser] = None,
) -> list[FileContext]:
    """
    Read and parse multiple Go files into FileContexts.

    Unreadable or missing files are skipped (logged). Order matches input order.
    """
    if parser is None:
        parser = create_parser()

    contexts: list[FileContext] = []
    for path in paths:
        ctx = create_context(path, parser=parser)
        if ctx is not None:
            contexts.append(ctx)
    return contexts
