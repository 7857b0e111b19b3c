"""Shared fixtures: the Go source tree under testdata/src and throwaway source roots."""

import textwrap
from pathlib import Path
from typing import Callable

import pytest

from ifacecheck.program.loader import Loader

TESTDATA_SRC = Path(__file__).parent / "testdata" / "src"


@pytest.fixture
def testdata_src() -> Path:
    return TESTDATA_SRC


@pytest.fixture
def loader() -> Loader:
    """Loader over testdata/src (example.com/fakefmt, example.com/library, example.com/app)."""
    return Loader([TESTDATA_SRC])


@pytest.fixture
def go_tree(tmp_path) -> Callable[[dict[str, str]], Loader]:
    """
    Write {"import/path/file.go": source} under a fresh source root.

    Returns a function that writes the files and returns a Loader over the root.
    """
    root = tmp_path / "src"

    def write(files: dict[str, str]) -> Loader:
        for rel, text in files.items():
            path = root / rel
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(textwrap.dedent(text).lstrip())
        return Loader([root])

    return write
