"""Tests for the output formatting system.

Covers:
- OutputFormat resolution (auto -> rich/plain based on TTY)
- NO_COLOR / TERM=dumb color disabling
- stdout vs stderr discipline
- Quiet and verbose modes
- print_document and print_table in JSON and plain modes
- Global instance management
"""

from __future__ import annotations

import json

import pytest

from keyrelay import output as output_module
from keyrelay.output import (
    OutputFormat,
    OutputManager,
    _should_disable_color,
    get_output,
    reset_output,
    set_output,
)


# ------------------------------------------------------------------ #
# Fixtures
# ------------------------------------------------------------------ #


@pytest.fixture(autouse=True)
def _reset_global_output():
    """Ensure the global output instance is reset between tests."""
    reset_output()
    yield
    reset_output()


@pytest.fixture()
def non_tty(monkeypatch):
    """Patch stdout.isatty() to return False."""
    monkeypatch.setattr("keyrelay.output._is_tty", lambda: False)


@pytest.fixture()
def tty(monkeypatch):
    """Patch stdout.isatty() to return True."""
    monkeypatch.setattr("keyrelay.output._is_tty", lambda: True)


# ------------------------------------------------------------------ #
# OutputFormat resolution
# ------------------------------------------------------------------ #


class TestOutputFormatResolution:
    def test_auto_resolves_to_plain_when_not_tty(self, non_tty):
        assert OutputManager(format=OutputFormat.AUTO).format == OutputFormat.PLAIN

    def test_auto_resolves_to_rich_when_tty(self, tty, monkeypatch):
        monkeypatch.delenv("NO_COLOR", raising=False)
        monkeypatch.delenv("TERM", raising=False)
        assert OutputManager(format=OutputFormat.AUTO).format == OutputFormat.RICH

    def test_no_color_flag_forces_plain(self, tty, monkeypatch):
        monkeypatch.delenv("NO_COLOR", raising=False)
        mgr = OutputManager(format=OutputFormat.AUTO, no_color=True)
        assert mgr.format == OutputFormat.PLAIN

    def test_explicit_json_stays_json(self, non_tty):
        assert OutputManager(format=OutputFormat.JSON).format == OutputFormat.JSON


class TestColorDisabling:
    def test_no_color_env_any_value(self, monkeypatch):
        monkeypatch.setenv("NO_COLOR", "")
        assert _should_disable_color() is True

    def test_term_dumb(self, monkeypatch):
        monkeypatch.delenv("NO_COLOR", raising=False)
        monkeypatch.setenv("TERM", "dumb")
        assert _should_disable_color() is True

    def test_normal_term_keeps_color(self, monkeypatch):
        monkeypatch.delenv("NO_COLOR", raising=False)
        monkeypatch.setenv("TERM", "xterm-256color")
        assert _should_disable_color() is False


# ------------------------------------------------------------------ #
# stdout vs stderr discipline
# ------------------------------------------------------------------ #


class TestStdoutStderrDiscipline:
    def test_print_data_goes_to_stdout(self, capfd, non_tty):
        mgr = OutputManager(format=OutputFormat.PLAIN, no_color=True)
        mgr.print_data("hello world")
        captured = capfd.readouterr()
        assert "hello world" in captured.out
        assert captured.err == ""

    @pytest.mark.parametrize("method", ["info", "success", "warning", "error", "suggest"])
    def test_diagnostics_go_to_stderr(self, capfd, non_tty, method):
        mgr = OutputManager(format=OutputFormat.PLAIN, no_color=True)
        getattr(mgr, method)("a message")
        captured = capfd.readouterr()
        assert captured.out == ""
        assert "a message" in captured.err

    def test_error_prefix(self, capfd, non_tty):
        OutputManager(format=OutputFormat.PLAIN, no_color=True).error("broken")
        assert "Error: broken" in capfd.readouterr().err


class TestQuietAndVerbose:
    def test_quiet_suppresses_info_success_suggest(self, capfd, non_tty):
        mgr = OutputManager(format=OutputFormat.PLAIN, no_color=True, quiet=True)
        mgr.info("info")
        mgr.success("success")
        mgr.suggest("suggest")
        assert capfd.readouterr().err == ""

    def test_quiet_keeps_warnings_and_errors(self, capfd, non_tty):
        mgr = OutputManager(format=OutputFormat.PLAIN, no_color=True, quiet=True)
        mgr.warning("careful")
        mgr.error("broken")
        err = capfd.readouterr().err
        assert "careful" in err
        assert "broken" in err

    def test_debug_only_when_verbose(self, capfd, non_tty):
        OutputManager(format=OutputFormat.PLAIN, no_color=True).debug("hidden")
        OutputManager(format=OutputFormat.PLAIN, no_color=True, verbose=True).debug("shown")
        err = capfd.readouterr().err
        assert "hidden" not in err
        assert "[debug] shown" in err

    def test_progress_hidden_when_not_tty(self, capfd, non_tty):
        OutputManager(format=OutputFormat.PLAIN, no_color=True).progress("Waiting")
        assert capfd.readouterr().err == ""


# ------------------------------------------------------------------ #
# Documents and tables
# ------------------------------------------------------------------ #


class TestPrintDocument:
    def test_json_mode(self, capfd, non_tty):
        mgr = OutputManager(format=OutputFormat.JSON, no_color=True)
        mgr.print_document({"enabled": True, "tools": ["zread"]})
        assert json.loads(capfd.readouterr().out) == {"enabled": True, "tools": ["zread"]}

    def test_plain_mode_mapping(self, capfd, non_tty):
        mgr = OutputManager(format=OutputFormat.PLAIN, no_color=True)
        mgr.print_document({"mode": "direct", "tools": ["a", "b"]})
        lines = capfd.readouterr().out.splitlines()
        assert lines == ["mode\tdirect", 'tools\t["a", "b"]']

    def test_plain_mode_non_mapping(self, capfd, non_tty):
        OutputManager(format=OutputFormat.PLAIN, no_color=True).print_document([1, 2])
        assert json.loads(capfd.readouterr().out) == [1, 2]


class TestPrintTable:
    def test_plain_mode(self, capfd, non_tty):
        mgr = OutputManager(format=OutputFormat.PLAIN, no_color=True)
        mgr.print_table(["ID", "Name"], [["1", "a"], ["2", "b"]])
        assert capfd.readouterr().out.splitlines() == ["ID\tName", "1\ta", "2\tb"]

    def test_json_mode_uses_records(self, capfd, non_tty):
        mgr = OutputManager(format=OutputFormat.JSON, no_color=True)
        mgr.print_table(["ID"], [["1"]], records=[{"id": "1", "extra": True}])
        assert json.loads(capfd.readouterr().out) == [{"id": "1", "extra": True}]

    def test_json_mode_without_records(self, capfd, non_tty):
        mgr = OutputManager(format=OutputFormat.JSON, no_color=True)
        mgr.print_table(["ID", "Name"], [["1", "a"]])
        assert json.loads(capfd.readouterr().out) == [{"ID": "1", "Name": "a"}]

    def test_rich_mode_renders_headers(self, capfd, non_tty):
        mgr = OutputManager(format=OutputFormat.RICH, no_color=True)
        mgr.print_table(["Provider"], [["claude"]], title="Accounts")
        out = capfd.readouterr().out
        assert "Provider" in out
        assert "claude" in out


# ------------------------------------------------------------------ #
# Global instance
# ------------------------------------------------------------------ #


class TestGlobalInstance:
    def test_get_output_creates_default(self, non_tty):
        assert isinstance(get_output(), OutputManager)
        assert get_output() is get_output()

    def test_set_output(self, non_tty):
        mgr = OutputManager(format=OutputFormat.JSON)
        set_output(mgr)
        assert get_output() is mgr

    def test_module_helpers_delegate(self, capfd, non_tty):
        set_output(OutputManager(format=OutputFormat.PLAIN, no_color=True))
        output_module.print_data("data")
        output_module.warning("warn")
        captured = capfd.readouterr()
        assert "data" in captured.out
        assert "warn" in captured.err
