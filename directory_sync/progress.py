"""
Progress reporting for action commits.

The executor reports through a ``ProgressReporter`` instead of printing, so
callers choose between log records, a console progress line, or nothing.
"""

import sys
import logging
from typing import Optional, TextIO

logger = logging.getLogger(__name__)


class ProgressReporter:
    """Receives progress events from ``Actions.commit``. Ignores them by default."""

    def phase_started(self, label: str, phase: str, total: int) -> None:
        """
        Called once before the first action of a non-empty phase.

        Args:
            label: Entity kind label, e.g. ``Groups``
            phase: One of ``deletions``, ``updates``, ``additions``
            total: Number of actions in the phase
        """

    def action_completed(self, label: str, phase: str, done: int, total: int, failures: int) -> None:
        """
        Called after every action of a phase, whether it failed or not.

        Args:
            label: Entity kind label
            phase: Phase name
            done: Actions attempted so far in this phase
            total: Number of actions in the phase
            failures: Failed actions so far in this phase
        """


class LoggingProgressReporter(ProgressReporter):
    """Writes progress as log records."""

    def __init__(self, log: Optional[logging.Logger] = None):
        self.log = log or logger

    def phase_started(self, label: str, phase: str, total: int) -> None:
        self.log.info(f"({label}) Performing {phase}: {total} to do")

    def action_completed(self, label: str, phase: str, done: int, total: int, failures: int) -> None:
        self.log.debug(f"({label}) {phase} progress: {done}/{total} ({failures} failed)")
        if done == total:
            self.log.info(f"({label}) Finished {phase}: {total - failures} succeeded, {failures} failed")


class ConsoleProgressReporter(ProgressReporter):
    """Renders a single updating progress line per phase on a text stream."""

    def __init__(self, stream: Optional[TextIO] = None, width: int = 40):
        self.stream = stream or sys.stdout
        self.width = width

    def phase_started(self, label: str, phase: str, total: int) -> None:
        self.stream.write(f"({label}) Performing {phase}\n")
        self._render(0, total, 0)

    def action_completed(self, label: str, phase: str, done: int, total: int, failures: int) -> None:
        self._render(done, total, failures)
        if done == total:
            self.stream.write('\n')
        self.stream.flush()

    def _render(self, done: int, total: int, failures: int) -> None:
        filled = int(self.width * done / total) if total else self.width
        bar = '#' * filled + ' ' * (self.width - filled)
        line = f"\r[{bar}] {done}/{total}"
        if failures:
            line += f" ({failures} failed)"
        self.stream.write(line)


def create_progress_reporter(style: str = 'log') -> ProgressReporter:
    """
    Create a reporter from its configuration name.

    Args:
        style: ``log``, ``console`` or ``none``

    Returns:
        A progress reporter instance
    """
    style = (style or 'log').lower()
    if style == 'console':
        return ConsoleProgressReporter()
    if style == 'none':
        return ProgressReporter()
    return LoggingProgressReporter()
