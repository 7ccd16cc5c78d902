"""Terminal output with strict stdout/stderr separation.

* **stdout** carries data only: account tables, key lists, JSON documents.
  This is what scripts pipe and parse.
* **stderr** carries diagnostics: status, warnings, errors, suggestions and
  OAuth progress.
* **Format** -- Rich tables when stdout is an interactive terminal, tab
  separated text when piped, JSON with ``--json``.
* **Colour** -- disabled by ``NO_COLOR``, ``TERM=dumb`` or ``--no-color``.

:class:`OutputManager` holds the preferences; it is created in
:func:`~keyrelay.app.main_callback` and installed with :func:`set_output`.
The module-level helpers (:func:`info`, :func:`error`, ...) delegate to the
installed instance so commands do not pass it around.
"""

from __future__ import annotations

import json
import os
import sys
from enum import Enum
from typing import Any, Optional

from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table


class OutputFormat(str, Enum):
    """``AUTO`` resolves to ``RICH`` on a colour TTY and ``PLAIN`` otherwise."""

    AUTO = "auto"
    JSON = "json"
    PLAIN = "plain"
    RICH = "rich"


class OutputManager:
    """Route data to stdout and diagnostics to stderr in the chosen format.

    Args:
        format: Desired output format.
        no_color: Disable colour and Rich markup.
        quiet: Suppress informational stderr messages.
        verbose: Show debug messages on stderr.
    """

    def __init__(
        self,
        format: OutputFormat = OutputFormat.AUTO,
        no_color: bool = False,
        quiet: bool = False,
        verbose: bool = False,
    ) -> None:
        self._no_color = no_color or _should_disable_color()
        self._quiet = quiet
        self._verbose = verbose

        if format == OutputFormat.AUTO:
            self._format = (
                OutputFormat.RICH if _is_tty() and not self._no_color else OutputFormat.PLAIN
            )
        else:
            self._format = format

        self._stdout = Console(
            file=sys.stdout,
            no_color=self._no_color,
            force_terminal=(self._format == OutputFormat.RICH),
        )
        self._stderr = Console(file=sys.stderr, no_color=self._no_color, stderr=True)

    @property
    def format(self) -> OutputFormat:
        return self._format

    @property
    def is_quiet(self) -> bool:
        return self._quiet

    @property
    def is_verbose(self) -> bool:
        return self._verbose

    # ------------------------------------------------------------------ #
    # Data output (stdout)
    # ------------------------------------------------------------------ #

    def print_data(self, text: str) -> None:
        """Print raw text to stdout."""
        print(text, file=sys.stdout, flush=True)

    def print_document(self, data: Any) -> None:
        """Print a JSON-compatible value (settings, status, reports).

        JSON mode prints it verbatim, plain mode as ``key<TAB>value`` lines
        for mappings, Rich mode as highlighted JSON.
        """
        text = json.dumps(data, indent=2, ensure_ascii=False, default=str)
        if self._format == OutputFormat.JSON:
            self.print_data(text)
        elif self._format == OutputFormat.PLAIN:
            if isinstance(data, dict):
                for key, value in data.items():
                    if isinstance(value, (dict, list)):
                        value = json.dumps(value, ensure_ascii=False, default=str)
                    self.print_data(f"{key}\t{value}")
            else:
                self.print_data(text)
        else:
            self._stdout.print(Syntax(text, "json", theme="monokai", word_wrap=True))

    def print_table(
        self,
        headers: list[str],
        rows: list[list[str]],
        title: Optional[str] = None,
        records: Optional[list[dict[str, Any]]] = None,
    ) -> None:
        """Print rows as a table.

        In JSON mode *records* (full objects) are printed when given, else
        one object per row keyed by header.
        """
        if self._format == OutputFormat.JSON:
            payload = records if records is not None else [dict(zip(headers, r)) for r in rows]
            self.print_data(json.dumps(payload, indent=2, ensure_ascii=False, default=str))
        elif self._format == OutputFormat.PLAIN:
            self.print_data("\t".join(headers))
            for row in rows:
                self.print_data("\t".join(row))
        else:
            table = Table(title=title, show_header=True, header_style="bold cyan")
            for header in headers:
                table.add_column(header)
            for row in rows:
                table.add_row(*row)
            self._stdout.print(table)

    # ------------------------------------------------------------------ #
    # Diagnostics (stderr)
    # ------------------------------------------------------------------ #

    def _diag(self, markup: str, plain: str) -> None:
        if self._no_color:
            print(plain, file=sys.stderr, flush=True)
        else:
            self._stderr.print(markup)

    def info(self, message: str) -> None:
        """Informational message. Suppressed by ``--quiet``."""
        if not self._quiet:
            self._diag(message, message)

    def success(self, message: str) -> None:
        """Green success message. Suppressed by ``--quiet``."""
        if not self._quiet:
            self._diag(f"[green]{message}[/green]", message)

    def warning(self, message: str) -> None:
        """Yellow warning. Never suppressed."""
        self._diag(f"[yellow]Warning:[/yellow] {message}", f"Warning: {message}")

    def error(self, message: str) -> None:
        """Bold red error. Never suppressed."""
        self._diag(f"[bold red]Error:[/bold red] {message}", f"Error: {message}")

    def suggest(self, message: str) -> None:
        """Dimmed next-step hint. Suppressed by ``--quiet``."""
        if not self._quiet:
            formatted = f"→ {message}"
            self._diag(f"[dim]{formatted}[/dim]", formatted)

    def debug(self, message: str) -> None:
        """Debug message, shown only with ``--verbose``."""
        if self._verbose:
            self._diag(f"[dim][debug] {message}[/dim]", f"[debug] {message}")

    def progress(self, message: str) -> None:
        """Dimmed progress line; only on a TTY and not with ``--quiet``."""
        if not self._quiet and _is_tty():
            self._diag(f"[dim]{message}[/dim]", message)


def _is_tty() -> bool:
    return hasattr(sys.stdout, "isatty") and sys.stdout.isatty()


def _should_disable_color() -> bool:
    """True when ``NO_COLOR`` is set (any value) or ``TERM=dumb``."""
    if os.environ.get("NO_COLOR") is not None:
        return True
    return os.environ.get("TERM") == "dumb"


# ------------------------------------------------------------------ #
# Installed instance
# ------------------------------------------------------------------ #

_output: Optional[OutputManager] = None


def get_output() -> OutputManager:
    """Return the installed manager, creating a default one lazily."""
    global _output
    if _output is None:
        _output = OutputManager()
    return _output


def set_output(output: OutputManager) -> None:
    global _output
    _output = output


def reset_output() -> None:
    """Forget the installed manager (used between tests)."""
    global _output
    _output = None


def print_data(text: str) -> None:
    get_output().print_data(text)


def print_document(data: Any) -> None:
    get_output().print_document(data)


def print_table(
    headers: list[str],
    rows: list[list[str]],
    title: Optional[str] = None,
    records: Optional[list[dict[str, Any]]] = None,
) -> None:
    get_output().print_table(headers, rows, title, records)


def info(message: str) -> None:
    get_output().info(message)


def error(message: str) -> None:
    get_output().error(message)


def success(message: str) -> None:
    get_output().success(message)


def warning(message: str) -> None:
    get_output().warning(message)


def suggest(message: str) -> None:
    get_output().suggest(message)


def debug(message: str) -> None:
    get_output().debug(message)


def progress(message: str) -> None:
    get_output().progress(message)
