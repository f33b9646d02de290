"""Cooperative cancellation flag threaded through every stage loop.

Cancellation is never preemptive: a stage only stops when it reaches its
next checkpoint, where ``checkpoint()`` raises StageCancelled. The stage
boundary then runs the stage's rollback actions and returns Cancelled.
"""

import threading

from windresource.core.errors import StageCancelled


class CancellationContext:
    """Thread-safe cancellation flag for one stage invocation.

    Example:
        for turbine in turbines:
            cancellation.checkpoint()
            ...
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self.reason: str | None = None

    def cancel(self, reason: str = "cancelled by user") -> None:
        """Request cancellation. Idempotent."""
        if not self._event.is_set():
            self.reason = reason
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def checkpoint(self) -> None:
        """Raise StageCancelled if cancellation has been requested.

        Raises:
            StageCancelled: When the flag is set.
        """
        if self._event.is_set():
            raise StageCancelled(self.reason or "cancelled")

    def __repr__(self) -> str:
        return f"CancellationContext(cancelled={self.is_cancelled})"
