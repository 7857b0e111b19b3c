# Tree-sitter setup and Go parsing: source bytes to AST plus small node helpers
# shared by the context and the program builder.

import logging
from pathlib import Path
from typing import Iterator, Optional

import tree_sitter
from tree_sitter import Language
from tree_sitter import Node as TSNode
from tree_sitter_go import language as _go_language_capsule

logger = logging.getLogger(__name__)

# Go language grammar: wrap tree-sitter-go capsule for use with tree_sitter.Parser
_GO_LANGUAGE = Language(_go_language_capsule())


def get_go_language() -> Language:
    """Return the Tree-sitter Language object for Go."""
    return _GO_LANGUAGE


def create_parser() -> tree_sitter.Parser:
    """Create and return a Tree-sitter Parser configured for Go."""
    return tree_sitter.Parser(_GO_LANGUAGE)


def walk(node: TSNode) -> Iterator[TSNode]:
    """Yield every descendant of node in document order (DFS)."""
    yield node
    for child in node.children:
        yield from walk(child)


def iter_error_nodes(root: TSNode) -> Iterator[TSNode]:
    """Yield ERROR and MISSING nodes under root."""
    for node in walk(root):
        if node.type == "ERROR" or node.is_missing:
            yield node


def node_text(node: Optional[TSNode]) -> str:
    """Decoded text of a node, or "" for None."""
    if node is None or node.text is None:
        return ""
    return node.text.decode("utf-8", errors="replace")


def unquote(literal: str) -> str:
    """Strip the quotes of an interpreted ("...") or raw (`...`) string literal."""
    if len(literal) >= 2 and literal[0] == literal[-1] and literal[0] in "\"`":
        return literal[1:-1]
    return literal


def parse_bytes(
    source: bytes,
    parser: Optional[tree_sitter.Parser] = None,
) -> tree_sitter.Tree:
    """
    Parse Go source bytes into an AST.

    Args:
        source: UTF-8 encoded Go source code.
        parser: Optional parser instance; if None, a new one is created.

    Returns:
        The parse tree. Syntax errors do not raise: the tree carries ERROR
        nodes and root_node.has_error is set.
    """
    if parser is None:
        parser = create_parser()
    tree = parser.parse(source)
    if tree.root_node.has_error:
        first = next(iter_error_nodes(tree.root_node), None)
        where = f"{first.start_point[0] + 1}:{first.start_point[1] + 1}" if first is not None else "?"
        logger.warning("Parse completed with errors: root=%s first error at %s", tree.root_node.type, where)
    else:
        logger.debug("Parse succeeded: root=%s", tree.root_node.type)
    return tree


def parse_file(path: Path, parser: Optional[tree_sitter.Parser] = None) -> Optional[tree_sitter.Tree]:
    """
    Parse a Go source file into an AST.

    Returns:
        The parse tree, or None if the file could not be read.
    """
    try:
        source = path.read_bytes()
    except OSError as e:
        logger.error("Failed to read file %s: %s", path, e)
        return None
    tree = parse_bytes(source, parser=parser)
    logger.info("Parsed file %s: success=%s", path, not tree.root_node.has_error)
    return tree
