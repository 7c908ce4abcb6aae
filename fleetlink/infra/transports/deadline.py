"""Restartable deadline for bounding socket reads.

Read loops that have no message boundaries need two bounds at once: an
overall deadline and an inactivity window that restarts on every chunk.
Both are modelled as Deadline objects; the loop waits for at most
min(overall.remaining(), idle.remaining()) per read.
"""

import asyncio


def _now() -> float:
    return asyncio.get_running_loop().time()


class Deadline:
    """A point in event-loop time that can be pushed back.

    Example:
        overall = Deadline(3.0)
        idle = Deadline(0.5)
        while not overall.expired:
            chunk = await asyncio.wait_for(reader.read(4096), Deadline.earliest(overall, idle))
            idle.restart()
    """

    def __init__(self, seconds: float) -> None:
        if seconds < 0:
            raise ValueError("Deadline seconds must be non-negative")
        self.seconds = seconds
        self._expires_at = _now() + seconds

    def restart(self, seconds: float | None = None) -> None:
        """Re-arm the deadline from now (optionally with a new duration)."""
        if seconds is not None:
            self.seconds = seconds
        self._expires_at = _now() + self.seconds

    def remaining(self) -> float:
        """Seconds left, never negative."""
        return max(0.0, self._expires_at - _now())

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0.0

    @staticmethod
    def earliest(*deadlines: "Deadline | None") -> float:
        """Smallest remaining time across the given deadlines."""
        active = [d.remaining() for d in deadlines if d is not None]
        if not active:
            raise ValueError("At least one deadline is required")
        return min(active)
