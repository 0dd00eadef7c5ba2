"""
Caller-supplied cancellation and timeout signal.

A Deadline is passed into store operations and checked before every call
into the backing store. Once it fires, the operation aborts with
Cancelled (explicit cancel) or DeadlineExceeded (time ran out).
"""

import threading
import time
from typing import Optional

from kvlog.exceptions import Cancelled, DeadlineExceeded


class Deadline:
    """Cancellation token with an optional timeout in seconds."""

    def __init__(self, timeout: Optional[float] = None, clock=time.monotonic):
        self._clock = clock
        self._expires_at = None if timeout is None else clock() + timeout
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        """Signal cancellation; safe to call from another thread."""
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def remaining(self) -> Optional[float]:
        """Seconds left before expiry, or None when there is no timeout."""
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - self._clock())

    @property
    def expired(self) -> bool:
        return self._expires_at is not None and self._clock() >= self._expires_at

    def check(self) -> None:
        """Raise if the deadline has fired."""
        if self._cancelled.is_set():
            raise Cancelled("Operation cancelled by caller")
        if self.expired:
            raise DeadlineExceeded("Operation deadline exceeded")

    def __repr__(self) -> str:
        return f"Deadline(remaining={self.remaining()}, cancelled={self.cancelled})"


def check_deadline(deadline: Optional[Deadline]) -> None:
    """Check `deadline` if one was given."""
    if deadline is not None:
        deadline.check()
