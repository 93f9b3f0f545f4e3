"""User-facing progress reporting for sync passes.

The sync engine reports through a :class:`Reporter` so the same engine can
drive a terminal, a GUI notice area, or nothing at all.
"""

from abc import ABC, abstractmethod
from typing import Optional

from rich.console import Console
from rich.status import Status


class Reporter(ABC):
    """Abstract interface for progress and outcome messages."""

    @abstractmethod
    def status(self, message: str) -> None:
        """Show or replace the persistent in-progress status line."""

    @abstractmethod
    def clear_status(self) -> None:
        """Hide the status line, if any."""

    @abstractmethod
    def notice(self, message: str) -> None:
        """Show a one-off message."""


class NoOpReporter(Reporter):
    """Reporter that shows nothing."""

    def status(self, message: str) -> None:
        return None

    def clear_status(self) -> None:
        return None

    def notice(self, message: str) -> None:
        return None


class ConsoleReporter(Reporter):
    """Report to a terminal with a Rich spinner for the status line."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()
        self._status: Optional[Status] = None

    def status(self, message: str) -> None:
        if self._status is None:
            self._status = self.console.status(message)
            self._status.start()
        else:
            self._status.update(message)

    def clear_status(self) -> None:
        if self._status is not None:
            self._status.stop()
            self._status = None

    def notice(self, message: str) -> None:
        self.console.print(message)
