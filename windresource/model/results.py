"""Stage outcomes.

Every stage invocation ends in exactly one of Completed, Cancelled or
Failed. A Cancelled or Failed stage has already rolled back its writes, so
there is no partially-completed variant.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from windresource.model.requests import StageKind


@dataclass(frozen=True)
class StageOutput:
    """What a stage body hands back on success.

    Attributes:
        mutations: Short descriptions of the snapshot/store changes made
        payload: Optional result object (simulator output, file path, ...)
    """

    mutations: tuple[str, ...] = ()
    payload: Any = None


@dataclass(frozen=True)
class Completed:
    kind: StageKind
    mutations: tuple[str, ...] = ()
    payload: Any = field(default=None, compare=False)

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Cancelled:
    kind: StageKind
    reason: str = ""

    @property
    def ok(self) -> bool:
        return False


@dataclass(frozen=True)
class Failed:
    """Stage ended with an error.

    Attributes:
        error_type: "ValidationError", "DataIOError" or "UnhandledFailure"
        message: One-line error message
        detail: Full detail (traceback for unhandled failures)
    """

    kind: StageKind
    error_type: str
    message: str
    detail: str = ""

    @property
    def ok(self) -> bool:
        return False


StageResult = Completed | Cancelled | Failed
