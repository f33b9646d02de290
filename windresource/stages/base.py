"""StageRunner contract shared by every stage.

A stage body (`execute`) receives its typed parameters and a StageContext.
It raises to signal failure or cancellation and registers a rollback action
before each write it makes. `invoke` is the stage boundary:

    success                     -> rollbacks discarded  -> Completed
    StageCancelled              -> rollbacks run (LIFO) -> Cancelled
    ValidationError/DataIOError -> rollbacks run (LIFO) -> Failed
    any other Exception         -> rollbacks run (LIFO) -> Failed("UnhandledFailure")
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, ClassVar

from windresource.core.cancellation import CancellationContext
from windresource.core.errors import DataIOError, StageCancelled, UnhandledFailure, ValidationError
from windresource.core.progress import ProgressReporter
from windresource.model.requests import StageKind, StageParams, WorkRequest
from windresource.model.results import Cancelled, Completed, Failed, StageOutput, StageResult

if TYPE_CHECKING:
    from windresource.model.snapshot import DomainSnapshot
    from windresource.providers.project_store import ProjectStore

logger = logging.getLogger(__name__)


@dataclass
class StageContext:
    """Everything a stage body may touch during one invocation.

    Attributes:
        snapshot: Project state, exclusively owned by this stage while it runs
        store: Project database (None for in-memory projects)
        reporter: Progress stream
        cancellation: Cooperative cancellation flag
    """

    snapshot: "DomainSnapshot"
    store: "ProjectStore | None"
    reporter: ProgressReporter
    cancellation: CancellationContext
    _rollbacks: list[tuple[str, Callable[[], None]]] = field(default_factory=list)

    def checkpoint(self) -> None:
        self.cancellation.checkpoint()

    def report(self, percent: float, message: str) -> None:
        self.reporter.report(percent=percent, message=message)

    def add_rollback(self, description: str, action: Callable[[], None]) -> None:
        """Register a compensating action, run if the stage does not complete."""
        self._rollbacks.append((description, action))

    def require_store(self) -> "ProjectStore":
        if self.store is None:
            raise ValidationError("This stage needs an open project database")
        return self.store

    def run_rollbacks(self) -> None:
        """Run rollbacks newest first. A failing rollback is logged and the rest still run."""
        while self._rollbacks:
            description, action = self._rollbacks.pop()
            logger.info(f"[ROLLBACK] {description}")
            try:
                action()
            except Exception as e:
                logger.error(f"[ROLLBACK] '{description}' failed: {e}")

    def discard_rollbacks(self) -> None:
        self._rollbacks.clear()

    @property
    def pending_rollbacks(self) -> list[str]:
        return [description for description, _ in self._rollbacks]


class StageRunner(ABC):
    """One stage kind: a typed parameters -> StageOutput function plus the shared boundary."""

    kind: ClassVar[StageKind]

    @abstractmethod
    def execute(self, params: StageParams, ctx: StageContext) -> StageOutput:
        """Run the stage body.

        Raises:
            StageCancelled: From ctx.checkpoint() when cancellation was requested.
            ValidationError: Missing or invalid input.
            DataIOError: File, network or persistence failure.
        """

    def invoke(self, request: WorkRequest, ctx: StageContext) -> StageResult:
        """Run the stage and convert its outcome into a StageResult. Never raises for Exception subclasses."""
        if request.kind is not self.kind:
            return Failed(self.kind, "ValidationError", f"{type(self).__name__} cannot run {request.kind.value}")

        logger.info(f"[STAGE] {self.kind.value} started")
        try:
            output = self.execute(request.params, ctx)
        except StageCancelled as e:
            logger.info(f"[STAGE] {self.kind.value} cancelled: {e}")
            ctx.run_rollbacks()
            return Cancelled(self.kind, reason=str(e))
        except (ValidationError, DataIOError) as e:
            logger.warning(f"[STAGE] {self.kind.value} failed: {type(e).__name__}: {e}")
            ctx.run_rollbacks()
            return Failed(self.kind, type(e).__name__, str(e), detail=str(e))
        except Exception as e:
            failure = UnhandledFailure(e)
            logger.error(f"[STAGE] {self.kind.value} unhandled failure:\n{failure.detail}")
            ctx.run_rollbacks()
            return Failed(self.kind, "UnhandledFailure", str(failure), detail=failure.detail)

        ctx.discard_rollbacks()
        logger.info(f"[STAGE] {self.kind.value} completed: {', '.join(output.mutations) or 'no changes'}")
        return Completed(self.kind, mutations=output.mutations, payload=output.payload)
