"""
Reentrancy guard: one analysis pass at a time per session.

The coordinator's own catalog lookups and maintenance can be queries
routed back through the same session; the guard makes those a no-op.
"""

from contextlib import contextmanager
from typing import Iterator

from jitstats.errors import GuardBusy


class ReentrancyGuard:
    """Session-scoped Idle/Analyzing flag."""

    def __init__(self):
        self._active = False
        self.entered_count = 0

    @property
    def active(self) -> bool:
        """True while an analysis pass holds the guard."""
        return self._active

    def try_enter(self) -> bool:
        """
        Move Idle -> Analyzing.

        Returns:
            False if a pass is already running
        """
        if self._active:
            return False
        self._active = True
        self.entered_count += 1
        return True

    def exit(self) -> None:
        """Move Analyzing -> Idle."""
        self._active = False

    @contextmanager
    def held(self) -> Iterator["ReentrancyGuard"]:
        """
        Hold the guard for the duration of a with-block.

        Raises:
            GuardBusy: the guard is already held
        """
        if not self.try_enter():
            raise GuardBusy("an analysis pass is already running in this session")
        try:
            yield self
        finally:
            self.exit()
