"""
Diagnostics sinks.

Every locator and checksum step can report free-form text. Nothing in the
analysis depends on what the sink does with it.
"""

import sys
from typing import Optional, TextIO

from rich.console import Console


class Diagnostics:
    """Diagnostics sink that discards everything."""

    def emit(self, message: str) -> None:
        pass


class ConsoleDiagnostics(Diagnostics):
    """Write diagnostics as plain text lines to a rich console."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console(file=sys.stderr, highlight=False)

    @classmethod
    def to_file(cls, stream: TextIO) -> "ConsoleDiagnostics":
        """Bind to an already opened text stream, e.g. the debug log"""
        return cls(Console(file=stream, highlight=False, color_system=None,
                           soft_wrap=True))

    def emit(self, message: str) -> None:
        self.console.print(message, markup=False)


NULL_DIAG = Diagnostics()
