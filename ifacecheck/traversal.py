"""
File system traversal: walk directories and collect Go source files.

A Go package is a directory, so besides the recursive file search this module
groups files by directory. Test files (_test.go) are skipped: they may belong
to an external test package and are not part of the package under analysis.
Files excluded by build constraints (_GOOS/_GOARCH name suffixes and
//go:build lines) for the target platform are skipped too; the target is the
host unless $GOOS / $GOARCH say otherwise.

Typical usage:
    from pathlib import Path
    from ifacecheck.traversal import find_go_files, find_package_dirs

    go_files = find_go_files(Path("./my_module"))
    package_dirs = find_package_dirs(Path("./my_module"))
"""

import logging
import os
import platform
import re
import sys
from pathlib import Path
from typing import Callable, Optional, Set

logger = logging.getLogger(__name__)

# Directories the go tool itself ignores, plus tooling and VCS noise
DEFAULT_IGNORE_DIRS: Set[str] = {
    "testdata",
    "vendor",
    "node_modules",
    ".git",
    ".svn",
    ".hg",
    ".vscode",
    ".idea",
    "venv",
    ".venv",
    "__pycache__",
    ".cache",
    ".pytest_cache",
}


def is_go_file(path: Path) -> bool:
    """
    Check if a file is a Go source file that belongs to its package.

    Examples:
        >>> is_go_file(Path("main.go"))
        True
        >>> is_go_file(Path("main_test.go"))
        False
    """
    return path.suffix == ".go" and not is_test_file(path)


def is_test_file(path: Path) -> bool:
    """Check if a file is a Go test file (_test.go suffix)."""
    return path.name.endswith("_test.go")


# GOOS / GOARCH values recognised in file names and build constraints
KNOWN_OS = frozenset(
    "aix android darwin dragonfly freebsd hurd illumos ios js linux nacl netbsd openbsd "
    "plan9 solaris wasip1 windows zos".split()
)
KNOWN_ARCH = frozenset(
    "386 amd64 amd64p32 arm armbe arm64 arm64be loong64 mips mipsle mips64 mips64le "
    "mips64p32 mips64p32le ppc ppc64 ppc64le riscv riscv64 s390 s390x sparc sparc64 wasm".split()
)
UNIX_OS = frozenset(
    "aix android darwin dragonfly freebsd hurd illumos ios linux netbsd openbsd solaris".split()
)

_MACHINE_ARCH = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "i386": "386",
    "i686": "386",
    "x86": "386",
    "armv7l": "arm",
    "armv6l": "arm",
    "ppc64le": "ppc64le",
    "s390x": "s390x",
    "riscv64": "riscv64",
}

_CONSTRAINT_TOKEN = re.compile(r"\s*(\(|\)|!|&&|\|\||[\w.]+)")


def host_target() -> tuple[str, str]:
    """(GOOS, GOARCH) to select files for; $GOOS and $GOARCH override the host."""
    goos = os.environ.get("GOOS")
    if not goos:
        goos = "windows" if sys.platform == "win32" else sys.platform.rstrip("0123456789")
    goarch = os.environ.get("GOARCH") or _MACHINE_ARCH.get(platform.machine().lower(), "amd64")
    return goos, goarch


def match_tag(tag: str, target: tuple[str, str]) -> bool:
    """Whether a single build tag is satisfied for target."""
    goos, goarch = target
    if tag in (goos, goarch, "gc"):
        return True
    if tag == "unix":
        return goos in UNIX_OS
    if tag.startswith("go1."):
        return True
    # Implied operating systems, as the go tool applies them.
    return (goos, tag) in {("android", "linux"), ("ios", "darwin"), ("illumos", "solaris")}


def filename_matches(path: Path, target: tuple[str, str]) -> bool:
    """
    Check the _GOOS, _GOARCH and _GOOS_GOARCH suffixes of a Go file name.

    Examples:
        >>> filename_matches(Path("file_windows.go"), ("linux", "amd64"))
        False
        >>> filename_matches(Path("file_linux_arm64.go"), ("linux", "amd64"))
        False
        >>> filename_matches(Path("linux.go"), ("windows", "amd64"))
        True
    """
    name = path.name[: -len(".go")] if path.name.endswith(".go") else path.name
    if name.endswith("_test"):
        name = name[: -len("_test")]
    parts = name.split("_")[1:]
    if len(parts) >= 2 and parts[-2] in KNOWN_OS and parts[-1] in KNOWN_ARCH:
        return match_tag(parts[-2], target) and match_tag(parts[-1], target)
    if parts and (parts[-1] in KNOWN_OS or parts[-1] in KNOWN_ARCH):
        return match_tag(parts[-1], target)
    return True


def evaluate_constraint(expr: str, target: tuple[str, str]) -> bool:
    """
    Evaluate a //go:build expression (tags combined with !, &&, || and parentheses).

    Raises:
        ValueError: If the expression is malformed.
    """
    tokens: list[str] = []
    pos = 0
    expr = expr.strip()
    while pos < len(expr):
        m = _CONSTRAINT_TOKEN.match(expr, pos)
        if m is None:
            raise ValueError(f"unexpected character in build constraint: {expr[pos:]!r}")
        tokens.append(m.group(1))
        pos = m.end()
    index = 0

    def peek() -> Optional[str]:
        return tokens[index] if index < len(tokens) else None

    def take() -> str:
        nonlocal index
        if index >= len(tokens):
            raise ValueError(f"unexpected end of build constraint: {expr!r}")
        index += 1
        return tokens[index - 1]

    def or_expr() -> bool:
        result = and_expr()
        while peek() == "||":
            take()
            rhs = and_expr()
            result = result or rhs
        return result

    def and_expr() -> bool:
        result = unary()
        while peek() == "&&":
            take()
            rhs = unary()
            result = result and rhs
        return result

    def unary() -> bool:
        token = take()
        if token == "!":
            return not unary()
        if token == "(":
            result = or_expr()
            if take() != ")":
                raise ValueError(f"missing ) in build constraint: {expr!r}")
            return result
        if token in (")", "&&", "||"):
            raise ValueError(f"unexpected {token} in build constraint: {expr!r}")
        return match_tag(token, target)

    result = or_expr()
    if index != len(tokens):
        raise ValueError(f"trailing tokens in build constraint: {expr!r}")
    return result


def read_build_constraint(path: Path) -> Optional[str]:
    """The //go:build expression in the file header, or None if there is none."""
    with path.open(encoding="utf-8", errors="replace") as f:
        for line in f:
            stripped = line.strip()
            if not stripped:
                continue
            if not stripped.startswith("//"):
                return None
            if stripped.startswith("//go:build "):
                return stripped[len("//go:build ") :]
    return None


def matches_build_context(path: Path, target: Optional[tuple[str, str]] = None) -> bool:
    """
    Whether path is part of its package when building for target (default: host_target()).

    Checks the file name suffixes and the //go:build line. Files that cannot be
    read, or whose constraint does not parse, are kept.
    """
    if target is None:
        target = host_target()
    if not filename_matches(path, target):
        logger.debug("Excluding %s: file name does not match %s/%s", path, *target)
        return False
    try:
        expr = read_build_constraint(path)
    except OSError as e:
        logger.debug("Cannot read build constraint of %s: %s", path, e)
        return True
    if expr is None:
        return True
    try:
        matched = evaluate_constraint(expr, target)
    except ValueError as e:
        logger.warning("Ignoring build constraint of %s: %s", path, e)
        return True
    if not matched:
        logger.debug("Excluding %s: //go:build %s", path, expr)
    return matched


def should_ignore_directory(dir_path: Path, ignore_dirs: Set[str]) -> bool:
    """
    Check if a directory should be ignored during traversal.

    Directories whose name starts with "." or "_" are ignored as the go tool does.

    Examples:
        >>> should_ignore_directory(Path("vendor"), DEFAULT_IGNORE_DIRS)
        True
        >>> should_ignore_directory(Path("_old"), set())
        True
        >>> should_ignore_directory(Path("internal"), DEFAULT_IGNORE_DIRS)
        False
    """
    name = dir_path.name
    return name in ignore_dirs or name.startswith(".") or name.startswith("_")


def list_go_files(directory: Path) -> list[Path]:
    """Go files directly inside directory (one package), sorted by name."""
    try:
        entries = list(directory.iterdir())
    except OSError as e:
        logger.warning("Error accessing directory %s: %s", directory, e)
        return []
    return sorted(p for p in entries if p.is_file() and is_go_file(p) and matches_build_context(p))


def find_go_files(
    root: Path,
    ignore_dirs: Optional[Set[str]] = None,
    follow_symlinks: bool = False,
    filter_fn: Optional[Callable[[Path], bool]] = None,
) -> list[Path]:
    """
    Recursively find all Go source files in a directory tree.

    Args:
        root: Root directory to start traversal from.
        ignore_dirs: Set of directory names to skip. If None, uses DEFAULT_IGNORE_DIRS.
        follow_symlinks: If True, follow symbolic links during traversal.
        filter_fn: Optional additional filter; only files for which it returns
                   True are included.

    Returns:
        Sorted list of matching files.

    Raises:
        FileNotFoundError: If root does not exist.
        NotADirectoryError: If root is not a directory.
    """
    if ignore_dirs is None:
        ignore_dirs = DEFAULT_IGNORE_DIRS

    root = root.resolve()

    if not root.exists():
        logger.error("Root directory does not exist: %s", root)
        raise FileNotFoundError(f"Root directory does not exist: {root}")

    if not root.is_dir():
        logger.error("Root path is not a directory: %s", root)
        raise NotADirectoryError(f"Root path is not a directory: {root}")

    logger.info("Starting traversal from: %s", root)

    collected_files: list[Path] = []

    def _walk_directory(current_dir: Path) -> None:
        try:
            for entry in current_dir.iterdir():
                if entry.is_symlink() and not follow_symlinks:
                    logger.debug("Skipping symlink: %s", entry)
                    continue

                if entry.is_dir():
                    if should_ignore_directory(entry, ignore_dirs):
                        logger.debug("Ignoring directory: %s", entry)
                        continue
                    _walk_directory(entry)

                elif entry.is_file() and is_go_file(entry):
                    if not matches_build_context(entry):
                        continue
                    if filter_fn is not None and not filter_fn(entry):
                        logger.debug("Filtered out by custom filter: %s", entry)
                        continue
                    collected_files.append(entry)

        except PermissionError as e:
            logger.warning("Permission denied accessing directory %s: %s", current_dir, e)
        except OSError as e:
            logger.warning("Error accessing directory %s: %s", current_dir, e)

    _walk_directory(root)
    collected_files.sort()

    logger.info("Traversal complete: found %d Go file(s) in %s", len(collected_files), root)
    return collected_files


def find_package_dirs(
    root: Path,
    ignore_dirs: Optional[Set[str]] = None,
    follow_symlinks: bool = False,
) -> list[Path]:
    """
    Directories under root (root included) that contain at least one Go file.

    Returns:
        Sorted list of package directories.
    """
    files = find_go_files(root, ignore_dirs=ignore_dirs, follow_symlinks=follow_symlinks)
    return sorted({f.parent for f in files})
