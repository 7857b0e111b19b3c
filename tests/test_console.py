"""Tests for rich console reporting."""

from pathlib import Path

from rich.console import Console

from ifacecheck.findings.models import Finding, Location, Origin
from ifacecheck.reporting.console import print_findings


def _finding(path: str, line: int, type_name: str = "FakefmtPrinter") -> Finding:
    return Finding(
        rule_id="interface-leak",
        message=f'call to a provided interface found (method "Print" on type {type_name} from pkg "example.com/library")',
        location=Location(path=Path(path), line=line, column=2, snippet='\tp.Print("x")'),
        method="Print",
        origin=Origin(type_name=type_name, package_path="example.com/library"),
    )


def _render(*args, **kwargs) -> str:
    console = Console(record=True, width=200)
    print_findings(*args, console=console, **kwargs)
    return console.export_text()


def test_no_findings_panel():
    assert "No issues found." in _render([])


def test_findings_grouped_with_snippets_and_summary():
    text = _render([_finding("/src/b.go", 4), _finding("/src/a.go", 9)])
    assert text.index("a.go") < text.index("b.go")
    assert 'p.Print("x")' in text
    assert "2 findings" in text
    assert "2 warning" in text


def test_leaking_types_table_counts_calls():
    text = _render([_finding("/src/a.go", 1), _finding("/src/a.go", 2), _finding("/src/a.go", 3, "Other")])
    assert "Leaking Types" in text
    assert "Other" in text


def test_file_summary_marks_clean_files():
    text = _render([_finding("/src/a.go", 1)], analyzed_files=[Path("/src/a.go"), Path("/src/c.go")])
    assert "LEAKS" in text
    assert "OK" in text


def test_verbose_shows_remediation():
    text = _render([_finding("/src/a.go", 1)], verbose=True)
    assert "[Fix]" in text
