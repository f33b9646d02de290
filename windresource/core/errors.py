"""Error taxonomy shared by the scheduler, the stages and the providers.

Stage bodies raise these; the stage boundary (StageRunner.invoke) converts
them into StageResult variants so nothing escapes into the scheduler.

    WindResourceError
    ├── ValidationError      missing or invalid input
    ├── DataIOError          file, network or persistence failure (also an OSError)
    ├── StageCancelled       cooperative cancellation reached a checkpoint
    ├── AlreadyRunningError  scheduler is busy
    ├── NotRunningError      cancel for a stage that is not active
    └── UnhandledFailure     unexpected fault, carries the original traceback
"""

from __future__ import annotations

import traceback


class WindResourceError(Exception):
    """Base class for all windresource errors."""


class ValidationError(WindResourceError):
    """Required input is missing or invalid (e.g. no wind distribution for a turbine)."""


class DataIOError(WindResourceError, OSError):
    """File, network or persistence failure."""


class StageCancelled(WindResourceError):
    """Raised by a cancellation checkpoint to unwind a stage body.

    Not treated as an error: the stage boundary turns it into a Cancelled result.
    """


class AlreadyRunningError(WindResourceError):
    """A stage was started while another one is still active."""

    def __init__(self, requested: str, active: str | None) -> None:
        self.requested = requested
        self.active = active
        super().__init__(f"Cannot start {requested}: {active or 'another stage'} is still running")


class NotRunningError(WindResourceError):
    """Cancel was requested for a stage that is not the active one."""

    def __init__(self, requested: str, active: str | None) -> None:
        self.requested = requested
        self.active = active
        super().__init__(f"Cannot cancel {requested}: active stage is {active or 'none'}")


class UnhandledFailure(WindResourceError):
    """Unexpected fault inside a stage body."""

    def __init__(self, cause: BaseException) -> None:
        self.cause = cause
        self.detail = "".join(traceback.format_exception(type(cause), cause, cause.__traceback__))
        super().__init__(f"{type(cause).__name__}: {cause}")
