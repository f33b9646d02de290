"""Progress reporting for long-running stages.

Stages emit (percent, message) pairs; the reporter stamps them with a
strictly increasing ordinal and hands them to every registered listener in
FIFO order. Percent is advisory only: stages reset it to 0 whenever they
enter a new phase (e.g. "Calculating exposures..." -> "Finding
site-calibrated models...").

Listeners are plain objects with an ``on_progress(event)`` method, so the
same stream can drive a UI, the log, or a test harness.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Protocol

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProgressEvent:
    """One progress update of the active stage.

    Attributes:
        percent: Completion estimate in [0, 100], advisory
        message: Human-readable status line
        ordinal: Position of the event within its stage run, starting at 1
        stage: Value of the StageKind that emitted the event
    """

    percent: float
    message: str
    ordinal: int
    stage: str | None = None

    def __str__(self) -> str:
        return f"[{self.stage}] {self.percent:5.1f}% {self.message}"


class ProgressListener(Protocol):
    """Anything that consumes progress events."""

    def on_progress(self, event: ProgressEvent) -> None: ...


class ProgressReporter:
    """Ordered progress stream of the active stage.

    Only one stage is active at a time, so events of two stages never
    interleave. The lock keeps ordinals and delivery order consistent when a
    stage reports from several worker threads (MERRA2 download fan-out).

    Example:
        reporter = ProgressReporter()
        reporter.add_listener(LoggingProgressListener())
        reporter.begin("ice_throw")
        reporter.report(percent=10, message="Running Ice Throw Model")
    """

    def __init__(self) -> None:
        self._listeners: list[ProgressListener] = []
        self._lock = threading.Lock()
        self._ordinal = 0
        self._stage: str | None = None

    def add_listener(self, listener: ProgressListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: ProgressListener) -> None:
        self._listeners.remove(listener)

    @property
    def stage(self) -> str | None:
        return self._stage

    def begin(self, stage: str) -> None:
        """Start a new event sequence for the given stage (ordinals restart at 1)."""
        with self._lock:
            self._stage = stage
            self._ordinal = 0

    def end(self) -> None:
        with self._lock:
            self._stage = None

    def report(self, percent: float, message: str) -> ProgressEvent:
        """Emit the next event to all listeners.

        Args:
            percent: Completion estimate, clamped to [0, 100]
            message: Status line

        Returns:
            The emitted event.
        """
        with self._lock:
            self._ordinal += 1
            event = ProgressEvent(
                percent=min(max(float(percent), 0.0), 100.0),
                message=message,
                ordinal=self._ordinal,
                stage=self._stage,
            )
            for listener in list(self._listeners):
                try:
                    listener.on_progress(event)
                except Exception as e:
                    # Listener faults are logged, never raised
                    logger.error(f"Progress listener {listener!r} failed: {e}")
        return event


class LoggingProgressListener:
    """Writes every progress event to the log."""

    def __init__(self, level: int = logging.INFO) -> None:
        self.level = level

    def on_progress(self, event: ProgressEvent) -> None:
        logger.log(self.level, f"[PROGRESS] {event}")


class RecordingProgressListener:
    """Keeps every event in memory (tests, CLI summaries)."""

    def __init__(self) -> None:
        self.events: list[ProgressEvent] = []

    def on_progress(self, event: ProgressEvent) -> None:
        self.events.append(event)

    @property
    def messages(self) -> list[str]:
        return [e.message for e in self.events]

    def clear(self) -> None:
        self.events.clear()


class ProgressThrottle:
    """Decides which units of work are worth a progress event.

    Example:
        throttle = ProgressThrottle(every_n=500)
        if throttle.due(count): reporter.report(...)
    """

    def __init__(self, every_n: int) -> None:
        if every_n < 1:
            raise ValueError(f"every_n must be >= 1, got {every_n}")
        self.every_n = every_n

    def due(self, count: int) -> bool:
        return count % self.every_n == 0

    def crossed(self, previous: int, current: int) -> bool:
        """True if a multiple of every_n lies in (previous, current]."""
        return current // self.every_n > previous // self.every_n


class ProgressClock:
    """Average time per unit and estimated time to finish.

    Used by stages whose units are slow and uniform (map nodes, MERRA2 files).
    """

    def __init__(self, total_units: int) -> None:
        self.total_units = total_units
        self._start = time.perf_counter()

    def elapsed_s(self) -> float:
        return time.perf_counter() - self._start

    def avg_time_per_unit_s(self, units_done: int) -> float:
        return self.elapsed_s() / max(units_done, 1)

    def minutes_to_finish(self, units_done: int) -> float:
        remaining = max(self.total_units - units_done, 0)
        return remaining * self.avg_time_per_unit_s(units_done) / 60.0

    def describe(self, units_done: int, unit: str) -> str:
        return (
            f"Avg time/{unit}: {self.avg_time_per_unit_s(units_done):.1f} secs. "
            f"Est. time to finish: {self.minutes_to_finish(units_done):.1f} mins."
        )
