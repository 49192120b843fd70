"""Console output for pyftpdeploy."""

import json
from typing import Any

from rich.console import Console

from .utils import format_size


class OutputFormatter:
    """Writes user-facing messages to the terminal.

    Errors always go to stderr and are never suppressed; everything else
    is hidden in quiet mode.
    """

    def __init__(self, json_output: bool = False, quiet: bool = False):
        """Initialize output formatter.

        Args:
            json_output: Print the final result as JSON instead of text
            quiet: Suppress non-essential output
        """
        self.json_output = json_output
        self.quiet = quiet
        self.console = Console(highlight=False)
        self.err_console = Console(stderr=True, highlight=False)

    def print(self, message: str = "") -> None:
        if self.quiet or self.json_output:
            return
        self.console.print(message, markup=False)

    def info(self, message: str) -> None:
        if self.quiet or self.json_output:
            return
        self.console.print(message, markup=False)

    def success(self, message: str) -> None:
        if self.quiet or self.json_output:
            return
        self.console.print(message, style="green", markup=False)

    def warning(self, message: str) -> None:
        if self.quiet:
            return
        self.err_console.print(message, style="yellow", markup=False)

    def error(self, message: str) -> None:
        self.err_console.print(message, style="bold red", markup=False)

    def output_json(self, data: Any) -> None:
        """Print data as indented JSON on stdout."""
        self.console.print_json(json.dumps(data, default=str))

    def format_size(self, size_bytes: float) -> str:
        return format_size(size_bytes)

    def separator(self) -> None:
        self.info("-" * 64)
