"""Tests for the typer CLI."""

from typer.testing import CliRunner

from ifacecheck.main import app

runner = CliRunner()


def _invoke(*args: str):
    return runner.invoke(app, list(args))


def test_reports_leaks_and_exits_one(testdata_src):
    target = testdata_src / "example.com" / "app"
    result = _invoke(str(target), "-p", "fakefmt", "-i", "Printer", "--src-root", str(testdata_src))
    assert result.exit_code == 1
    lines = result.stdout.strip().splitlines()
    assert len(lines) == 4
    assert lines[0].endswith(
        'a.go:10:2: WARNING [interface-leak] call to a provided interface found '
        '(method "Print" on type FakefmtPrinter from pkg "example.com/library")'
    )


def test_single_file_target_analyzes_its_package(testdata_src):
    target = testdata_src / "example.com" / "app" / "a.go"
    result = _invoke(str(target), "-p", "fakefmt", "-i", "Printer", "--src-root", str(testdata_src))
    assert result.exit_code == 1
    assert len(result.stdout.strip().splitlines()) == 4


def test_no_findings_exits_zero(testdata_src):
    target = testdata_src / "example.com" / "fakefmt"
    result = _invoke(str(target), "-p", "fakefmt", "-i", "Printer", "--src-root", str(testdata_src))
    assert result.exit_code == 0
    assert "No findings." in result.stdout


def test_missing_interface_exits_two(testdata_src):
    target = testdata_src / "example.com" / "library"
    result = _invoke(str(target), "-p", "fakefmt", "-i", "Printer", "--src-root", str(testdata_src))
    assert result.exit_code == 2
    assert "WARNING" not in result.stdout


def test_config_file_supplies_interface(testdata_src, tmp_path):
    config = tmp_path / "ifacecheck.toml"
    config.write_text('interface_package = "fakefmt"\ninterface_name = "NotAPrinter"\n')
    target = testdata_src / "example.com" / "app"
    result = _invoke(str(target), "--config", str(config), "--src-root", str(testdata_src))
    assert result.exit_code == 1
    assert len(result.stdout.strip().splitlines()) == 2


def test_flags_override_config_file(testdata_src, tmp_path):
    config = tmp_path / "ifacecheck.toml"
    config.write_text('interface_package = "fakefmt"\ninterface_name = "NotAPrinter"\n')
    target = testdata_src / "example.com" / "app"
    result = _invoke(str(target), "--config", str(config), "-i", "Printer", "--src-root", str(testdata_src))
    assert len(result.stdout.strip().splitlines()) == 4


def test_missing_settings_is_usage_error(testdata_src):
    result = _invoke(str(testdata_src / "example.com" / "app"), "-p", "fakefmt")
    assert result.exit_code == 2


def test_non_go_file_is_rejected(tmp_path):
    target = tmp_path / "notes.txt"
    target.write_text("hello")
    result = _invoke(str(target), "-p", "fakefmt", "-i", "Printer")
    assert result.exit_code == 2


def test_pretty_output(testdata_src):
    target = testdata_src / "example.com" / "app"
    result = _invoke(str(target), "-p", "fakefmt", "-i", "Printer", "--src-root", str(testdata_src), "--pretty")
    assert result.exit_code == 1
    assert "Leaking Types" in result.stdout
    assert "FakefmtPrinter" in result.stdout
