"""TaskScheduler - runs one stage at a time against the project snapshot.

Uses python-statemachine for the scheduler lifecycle:

    Idle --(start)--> Running --(complete)-------> Completed --(reset)--> Idle
                              --(mark_cancelled)-> Cancelled --(reset)--> Idle
                              --(fail)-----------> Failed    --(reset)--> Idle

The state machine is the only concurrency control over the DomainSnapshot:
`start` is refused unless the machine is Idle, and the check plus the
transition happen under one lock. The stage body runs outside the lock, on
the caller's thread (run) or on the single named stage worker (submit).

Exclusivity is released in a `finally` block, so every exit path (result,
cancellation, unexpected exception) drives the machine back to Idle before
completion handlers see the result.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Iterator

from statemachine import State, StateMachine
from statemachine.exceptions import TransitionNotAllowed

from windresource.constants import SchedulerConfig
from windresource.core.cancellation import CancellationContext
from windresource.core.errors import AlreadyRunningError, NotRunningError
from windresource.core.progress import ProgressReporter
from windresource.model.requests import StageKind, WorkRequest
from windresource.model.results import Cancelled, Completed, Failed, StageResult

if TYPE_CHECKING:
    from windresource.model.snapshot import DomainSnapshot
    from windresource.providers.project_store import ProjectStore
    from windresource.stages.base import StageRunner

logger = logging.getLogger(__name__)

CompletionHandler = Callable[[StageResult], None]

# Outcome event sent for each result variant
OUTCOME_EVENTS: dict[type, str] = {
    Completed: "complete",
    Cancelled: "mark_cancelled",
    Failed: "fail",
}


@dataclass
class SchedulerContext:
    """Model of the scheduler state machine.

    Note: The 'state' field is managed by python-statemachine when this
    object is passed as the model.
    """

    state: str | None = None

    active_kind: StageKind | None = None
    active_request: WorkRequest | None = None
    cancellation: CancellationContext | None = None
    last_result: StageResult | None = None

    def clear_active(self) -> None:
        self.active_kind = None
        self.active_request = None
        self.cancellation = None


class SchedulerLogListener:
    """Logs every scheduler transition."""

    def after_transition(self, event: str, source: State, target: State) -> None:
        logger.info(f"[SCHEDULER] {source.name} --({event})--> {target.name}")


class StageMachine(StateMachine):
    """Lifecycle of the single active stage."""

    idle = State("Idle", initial=True)
    running = State("Running")
    completed = State("Completed")
    cancelled = State("Cancelled")
    failed = State("Failed")

    start = idle.to(running)
    complete = running.to(completed)
    mark_cancelled = running.to(cancelled)
    fail = running.to(failed)
    reset = completed.to(idle) | cancelled.to(idle) | failed.to(idle)

    def __init__(self, context: SchedulerContext | None = None, start_value: str | None = None) -> None:
        model = context or SchedulerContext()
        super().__init__(model=model, start_value=start_value)

    @property
    def context(self) -> SchedulerContext:
        """Alias for model."""
        return self.model

    @property
    def is_idle(self) -> bool:
        return self.idle.is_active

    @property
    def is_running(self) -> bool:
        return self.running.is_active

    # ==========================================================================
    # Hooks
    # ==========================================================================

    def before_start(self, request: WorkRequest, cancellation: CancellationContext) -> None:
        self.context.active_kind = request.kind
        self.context.active_request = request
        self.context.cancellation = cancellation

    def before_complete(self, result: StageResult) -> None:
        self.context.last_result = result

    def before_mark_cancelled(self, result: StageResult) -> None:
        self.context.last_result = result

    def before_fail(self, result: StageResult) -> None:
        self.context.last_result = result

    def on_enter_idle(self) -> None:
        self.context.clear_active()

    # ==========================================================================
    # Utility Methods
    # ==========================================================================

    def get_state_name(self) -> str:
        return next(s.name for s in self.states if s.value == self.current_state_value)

    def try_transition(self, event: str, **kwargs: Any) -> bool:
        """Attempt a transition, returning success/failure."""
        try:
            self.send(event=event, **kwargs)
            return True
        except TransitionNotAllowed:
            logger.warning(f"Transition '{event}' not allowed from {self.get_state_name()}")
            return False

    def __repr__(self) -> str:
        return f"StageMachine(state={self.get_state_name()}, active={self.context.active_kind})"

    @staticmethod
    def create(add_log_listener: bool = True) -> tuple["StageMachine", SchedulerContext]:
        """Factory method to create the machine with its context and log listener."""
        context = SchedulerContext()
        sm = StageMachine(context=context)
        if add_log_listener:
            sm.add_listener(SchedulerLogListener())
        return sm, context


@dataclass
class _ActiveRun:
    request: WorkRequest
    cancellation: CancellationContext
    result: StageResult | None = None


class TaskScheduler:
    """Enforces one active stage and delivers its result.

    Example:
        scheduler = TaskScheduler(snapshot=snapshot, store=store)
        result = scheduler.run(WorkRequest(snapshot, IceThrowParams()))
        future = scheduler.submit(WorkRequest(snapshot, ShadowFlickerParams()))
        scheduler.cancel(StageKind.SHADOW_FLICKER)
    """

    def __init__(
        self,
        snapshot: "DomainSnapshot",
        store: "ProjectStore | None" = None,
        reporter: ProgressReporter | None = None,
        runners: dict[StageKind, "StageRunner"] | None = None,
    ) -> None:
        self.snapshot = snapshot
        self.store = store
        self.reporter = reporter or ProgressReporter()
        if runners is None:
            from windresource.stages import default_runners

            runners = default_runners()
        self._runners = runners
        self.machine, self.context = StageMachine.create()
        self._lock = threading.Lock()
        self._executor: ThreadPoolExecutor | None = None
        self._completion_handlers: list[CompletionHandler] = []

    # =========================================================================
    # Status
    # =========================================================================

    @property
    def is_busy(self) -> bool:
        with self._lock:
            return not self.machine.is_idle

    @property
    def active_kind(self) -> StageKind | None:
        return self.context.active_kind

    @property
    def last_result(self) -> StageResult | None:
        return self.context.last_result

    def add_completion_handler(self, handler: CompletionHandler) -> None:
        self._completion_handlers.append(handler)

    # =========================================================================
    # Start / Cancel
    # =========================================================================

    def run(self, request: WorkRequest) -> StageResult:
        """Run a stage on the calling thread and return its result.

        Raises:
            AlreadyRunningError: Another stage is active.
        """
        return self._run_acquired(self._acquire(request))

    def submit(self, request: WorkRequest) -> Future:
        """Start a stage on the stage worker.

        The Idle check happens here, on the caller's thread, so a busy
        scheduler raises immediately instead of through the future.

        Raises:
            AlreadyRunningError: Another stage is active.
        """
        active = self._acquire(request)
        try:
            return self._get_executor().submit(self._run_acquired, active)
        except RuntimeError:
            # Executor already shut down
            active.result = Failed(request.kind, "UnhandledFailure", "Scheduler has been shut down")
            self._release(active)
            raise

    def cancel(self, kind: StageKind, reason: str = "cancelled by user") -> None:
        """Request cooperative cancellation of the active stage.

        Raises:
            NotRunningError: kind is not the active stage.
        """
        with self._lock:
            active = self.context.active_kind
            if not self.machine.is_running or active != kind or self.context.cancellation is None:
                raise NotRunningError(kind.value, active.value if active else None)
            logger.info(f"[SCHEDULER] Cancel requested for {kind.value}: {reason}")
            self.context.cancellation.cancel(reason=reason)

    def shutdown(self, wait: bool = True) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
            self._executor = None

    # =========================================================================
    # Internals
    # =========================================================================

    def _get_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=SchedulerConfig.MAX_STAGE_WORKERS,
                thread_name_prefix=SchedulerConfig.WORKER_THREAD_PREFIX,
            )
        return self._executor

    def _acquire(self, request: WorkRequest) -> _ActiveRun:
        with self._lock:
            if not self.machine.is_idle:
                active = self.context.active_kind
                raise AlreadyRunningError(request.kind.value, active.value if active else None)
            cancellation = CancellationContext()
            self.machine.send("start", request=request, cancellation=cancellation)
        return _ActiveRun(request=request, cancellation=cancellation)

    def _release(self, active: _ActiveRun) -> None:
        result = active.result
        if result is None:
            result = Failed(active.request.kind, "UnhandledFailure", "Stage exited without a result")
            active.result = result
        with self._lock:
            self.machine.send(OUTCOME_EVENTS[type(result)], result=result)
            self.machine.send("reset")

    @contextmanager
    def _exclusive(self, active: _ActiveRun) -> Iterator[_ActiveRun]:
        try:
            yield active
        finally:
            self._release(active)

    def _run_acquired(self, active: _ActiveRun) -> StageResult:
        from windresource.stages.base import StageContext

        with self._exclusive(active):
            kind = active.request.kind
            runner = self._runners.get(kind)
            if runner is None:
                active.result = Failed(kind, "ValidationError", f"No runner registered for {kind.value}")
            else:
                ctx = StageContext(
                    snapshot=active.request.snapshot,
                    store=self.store,
                    reporter=self.reporter,
                    cancellation=active.cancellation,
                )
                self.reporter.begin(kind.value)
                try:
                    active.result = runner.invoke(request=active.request, ctx=ctx)
                finally:
                    self.reporter.end()

        self._notify(active.result)
        return active.result

    def _notify(self, result: StageResult) -> None:
        logger.info(f"[SCHEDULER] {result.kind.value} finished: {type(result).__name__}")
        for handler in list(self._completion_handlers):
            try:
                handler(result)
            except Exception as e:
                logger.error(f"Completion handler {handler!r} failed: {e}")
