"""Tests for the scheduler lifecycle and the stage boundary.

Tests: StageMachine transition matrix, TaskScheduler (run, submit, cancel,
exclusivity, completion handlers), StageRunner.invoke outcome mapping,
StageContext rollbacks
"""

import logging
import threading
import warnings

import pytest
from statemachine.exceptions import TransitionNotAllowed

from windresource.core.cancellation import CancellationContext
from windresource.core.errors import AlreadyRunningError, DataIOError, NotRunningError, ValidationError
from windresource.core.progress import ProgressReporter, RecordingProgressListener
from windresource.core.scheduler import SchedulerContext, StageMachine, TaskScheduler
from windresource.model.requests import ExceedanceParams, IceThrowParams, StageKind, WorkRequest
from windresource.model.results import Cancelled, Completed, Failed, StageOutput
from windresource.stages import RUNNER_CLASSES, default_runners
from windresource.stages.base import StageRunner

WAIT_S = 10.0


# =============================================================================
# STUB RUNNERS
# =============================================================================


class InstantRunner(StageRunner):
    kind = StageKind.EXCEEDANCE

    def execute(self, params, ctx) -> StageOutput:
        ctx.report(percent=50, message="halfway")
        return StageOutput(mutations=("nothing",), payload=42)


class BlockingRunner(StageRunner):
    """Holds the scheduler until released or cancelled."""

    kind = StageKind.EXCEEDANCE

    def __init__(self) -> None:
        self.started = threading.Event()
        self.release = threading.Event()

    def execute(self, params, ctx) -> StageOutput:
        self.started.set()
        while not self.release.wait(timeout=0.01):
            ctx.checkpoint()
        return StageOutput(mutations=("released",))


class RaisingRunner(StageRunner):
    kind = StageKind.EXCEEDANCE

    def __init__(self, error: Exception) -> None:
        self.error = error

    def execute(self, params, ctx) -> StageOutput:
        raise self.error


class RollbackRunner(StageRunner):
    """Registers three rollbacks, the middle one failing, then raises."""

    kind = StageKind.EXCEEDANCE

    def __init__(self, error: Exception) -> None:
        self.error = error
        self.undone: list[int] = []

    def execute(self, params, ctx) -> StageOutput:
        ctx.add_rollback("first", lambda: self.undone.append(1))
        ctx.add_rollback("broken", lambda: 1 / 0)
        ctx.add_rollback("third", lambda: self.undone.append(3))
        raise self.error


def exceedance_request(snapshot) -> WorkRequest:
    return WorkRequest(snapshot=snapshot, params=ExceedanceParams(num_sims=10))


# =============================================================================
# TRUTH TABLE: StageMachine transitions
# =============================================================================
# Format: (event_name, source_state, target_state)

VALID_TRANSITIONS: list[tuple[str, str, str]] = [
    ("complete", "running", "completed"),
    ("mark_cancelled", "running", "cancelled"),
    ("fail", "running", "failed"),
    ("reset", "completed", "idle"),
    ("reset", "cancelled", "idle"),
    ("reset", "failed", "idle"),
]

INVALID_TRANSITIONS: list[tuple[str, list[str]]] = [
    ("start", ["running", "completed", "cancelled", "failed"]),
    ("complete", ["idle", "completed", "cancelled", "failed"]),
    ("mark_cancelled", ["idle", "completed", "cancelled", "failed"]),
    ("fail", ["idle", "completed", "cancelled", "failed"]),
    ("reset", ["idle", "running"]),
]


class TestStageMachine:
    """StageMachine - Idle -> Running -> {Completed, Cancelled, Failed} -> Idle."""

    @pytest.mark.parametrize("event,source,target", VALID_TRANSITIONS)
    def test_valid_transition(self, event: str, source: str, target: str) -> None:
        sm = StageMachine(context=SchedulerContext(), start_value=source)
        result = Completed(StageKind.EXCEEDANCE)
        sm.send(event, result=result)
        assert getattr(sm, target).is_active

    @pytest.mark.parametrize("event,invalid_states", INVALID_TRANSITIONS)
    def test_invalid_transitions_raise_error(self, event: str, invalid_states: list[str]) -> None:
        for state_name in invalid_states:
            sm = StageMachine(context=SchedulerContext(), start_value=state_name)
            with pytest.raises(TransitionNotAllowed):
                sm.send(event)

    def test_start_records_active_request(self, snapshot) -> None:
        sm, ctx = StageMachine.create(add_log_listener=False)
        request = exceedance_request(snapshot)
        sm.start(request=request, cancellation=CancellationContext())
        assert sm.is_running
        assert ctx.active_kind is StageKind.EXCEEDANCE
        assert ctx.active_request is request

    def test_reset_clears_active_stage(self, snapshot) -> None:
        sm, ctx = StageMachine.create(add_log_listener=False)
        sm.start(request=exceedance_request(snapshot), cancellation=CancellationContext())
        result = Completed(StageKind.EXCEEDANCE)
        sm.complete(result=result)
        sm.reset()
        assert sm.is_idle
        assert ctx.active_kind is None
        assert ctx.cancellation is None
        assert ctx.last_result is result

    @pytest.mark.parametrize(
        "source,name", [("idle", "Idle"), ("running", "Running"), ("cancelled", "Cancelled")]
    )
    def test_state_name(self, source: str, name: str) -> None:
        sm = StageMachine(context=SchedulerContext(), start_value=source)
        with warnings.catch_warnings():
            warnings.simplefilter("error", DeprecationWarning)
            assert sm.get_state_name() == name
        assert name in repr(sm)

    def test_try_transition_reports_refusal(self) -> None:
        sm, _ = StageMachine.create(add_log_listener=False)
        assert sm.try_transition("reset") is False
        assert sm.is_idle


# =============================================================================
# SCHEDULER
# =============================================================================


class TestTaskScheduler:
    """TaskScheduler - one active stage, results delivered in every case."""

    def test_run_completes_and_returns_to_idle(self, snapshot) -> None:
        scheduler = TaskScheduler(snapshot=snapshot, runners={StageKind.EXCEEDANCE: InstantRunner()})
        result = scheduler.run(exceedance_request(snapshot))

        assert isinstance(result, Completed)
        assert result.payload == 42
        assert result.mutations == ("nothing",)
        assert not scheduler.is_busy
        assert scheduler.active_kind is None
        assert scheduler.last_result is result

    def test_completion_handler_receives_result(self, snapshot) -> None:
        scheduler = TaskScheduler(snapshot=snapshot, runners={StageKind.EXCEEDANCE: InstantRunner()})
        received = []
        scheduler.add_completion_handler(received.append)
        result = scheduler.run(exceedance_request(snapshot))
        assert received == [result]

    def test_failing_completion_handler_does_not_break_delivery(self, snapshot) -> None:
        scheduler = TaskScheduler(snapshot=snapshot, runners={StageKind.EXCEEDANCE: InstantRunner()})
        received = []
        scheduler.add_completion_handler(lambda r: 1 / 0)
        scheduler.add_completion_handler(received.append)
        scheduler.run(exceedance_request(snapshot))
        assert len(received) == 1

    def test_missing_runner_fails_without_locking_scheduler(self, snapshot) -> None:
        scheduler = TaskScheduler(snapshot=snapshot, runners={})
        result = scheduler.run(exceedance_request(snapshot))
        assert isinstance(result, Failed)
        assert result.error_type == "ValidationError"
        assert not scheduler.is_busy

    def test_second_start_while_running_is_refused(self, snapshot) -> None:
        runner = BlockingRunner()
        scheduler = TaskScheduler(snapshot=snapshot, runners={StageKind.EXCEEDANCE: runner})
        try:
            future = scheduler.submit(exceedance_request(snapshot))
            assert runner.started.wait(WAIT_S)
            assert scheduler.is_busy

            with pytest.raises(AlreadyRunningError) as exc_info:
                scheduler.run(WorkRequest(snapshot=snapshot, params=IceThrowParams()))
            assert exc_info.value.active == "exceedance"
            with pytest.raises(AlreadyRunningError):
                scheduler.submit(exceedance_request(snapshot))

            runner.release.set()
            result = future.result(timeout=WAIT_S)
        finally:
            runner.release.set()
            scheduler.shutdown()

        assert isinstance(result, Completed)
        assert not scheduler.is_busy

    def test_cancel_stops_running_stage(self, snapshot) -> None:
        runner = BlockingRunner()
        scheduler = TaskScheduler(snapshot=snapshot, runners={StageKind.EXCEEDANCE: runner})
        try:
            future = scheduler.submit(exceedance_request(snapshot))
            assert runner.started.wait(WAIT_S)
            scheduler.cancel(StageKind.EXCEEDANCE, reason="user pressed cancel")
            result = future.result(timeout=WAIT_S)
        finally:
            runner.release.set()
            scheduler.shutdown()

        assert isinstance(result, Cancelled)
        assert result.reason == "user pressed cancel"
        assert not scheduler.is_busy

    def test_cancel_when_idle_raises(self, snapshot) -> None:
        scheduler = TaskScheduler(snapshot=snapshot, runners={})
        with pytest.raises(NotRunningError):
            scheduler.cancel(StageKind.ICE_THROW)

    def test_cancel_of_other_kind_raises(self, snapshot) -> None:
        runner = BlockingRunner()
        scheduler = TaskScheduler(snapshot=snapshot, runners={StageKind.EXCEEDANCE: runner})
        try:
            future = scheduler.submit(exceedance_request(snapshot))
            assert runner.started.wait(WAIT_S)
            with pytest.raises(NotRunningError) as exc_info:
                scheduler.cancel(StageKind.ICE_THROW)
            assert exc_info.value.active == "exceedance"
            runner.release.set()
            assert isinstance(future.result(timeout=WAIT_S), Completed)
        finally:
            runner.release.set()
            scheduler.shutdown()

    def test_scheduler_is_reusable_after_failure(self, snapshot) -> None:
        runners = {StageKind.EXCEEDANCE: RaisingRunner(RuntimeError("boom"))}
        scheduler = TaskScheduler(snapshot=snapshot, runners=runners)
        assert isinstance(scheduler.run(exceedance_request(snapshot)), Failed)

        runners[StageKind.EXCEEDANCE] = InstantRunner()
        assert isinstance(scheduler.run(exceedance_request(snapshot)), Completed)

    def test_progress_ordinals_restart_per_stage(self, snapshot) -> None:
        reporter = ProgressReporter()
        recorder = RecordingProgressListener()
        reporter.add_listener(recorder)
        scheduler = TaskScheduler(snapshot=snapshot, reporter=reporter, runners={StageKind.EXCEEDANCE: InstantRunner()})
        scheduler.run(exceedance_request(snapshot))
        scheduler.run(exceedance_request(snapshot))

        assert [e.ordinal for e in recorder.events] == [1, 1]
        assert all(e.stage == "exceedance" for e in recorder.events)

    def test_default_runners_cover_every_kind(self) -> None:
        runners = default_runners()
        assert set(runners) == set(StageKind)
        assert len(RUNNER_CLASSES) == len(StageKind)
        assert all(runner.kind is kind for kind, runner in runners.items())


# =============================================================================
# STAGE BOUNDARY
# =============================================================================


class TestStageBoundary:
    """StageRunner.invoke - exceptions become results, rollbacks run newest first."""

    @pytest.mark.parametrize(
        "error,expected_type",
        [
            (ValidationError("bad input"), "ValidationError"),
            (DataIOError("disk gone"), "DataIOError"),
            (KeyError("surprise"), "UnhandledFailure"),
        ],
    )
    def test_errors_map_to_failed(self, snapshot, make_ctx, error: Exception, expected_type: str) -> None:
        ctx, _ = make_ctx(snapshot)
        result = RaisingRunner(error).invoke(request=exceedance_request(snapshot), ctx=ctx)
        assert isinstance(result, Failed)
        assert result.error_type == expected_type
        assert result.kind is StageKind.EXCEEDANCE

    def test_unhandled_failure_keeps_traceback(self, snapshot, make_ctx) -> None:
        ctx, _ = make_ctx(snapshot)
        result = RaisingRunner(ZeroDivisionError("division by zero")).invoke(request=exceedance_request(snapshot), ctx=ctx)
        assert "Traceback" in result.detail
        assert "ZeroDivisionError" in result.message

    def test_cancellation_maps_to_cancelled(self, snapshot, make_ctx) -> None:
        ctx, _ = make_ctx(snapshot)
        ctx.cancellation.cancel(reason="stop")
        result = BlockingRunner().invoke(request=exceedance_request(snapshot), ctx=ctx)
        assert result == Cancelled(StageKind.EXCEEDANCE, reason="stop")

    def test_rollbacks_run_lifo_and_survive_failures(self, snapshot, make_ctx, caplog) -> None:
        ctx, _ = make_ctx(snapshot)
        runner = RollbackRunner(ValidationError("bad"))
        with caplog.at_level(logging.ERROR):
            result = runner.invoke(request=exceedance_request(snapshot), ctx=ctx)

        assert isinstance(result, Failed)
        assert runner.undone == [3, 1]
        assert "'broken' failed" in caplog.text
        assert ctx.pending_rollbacks == []

    def test_success_discards_rollbacks(self, snapshot, make_ctx) -> None:
        class Writes(StageRunner):
            kind = StageKind.EXCEEDANCE

            def execute(self, params, ctx) -> StageOutput:
                ctx.add_rollback("undo", lambda: pytest.fail("rollback must not run"))
                return StageOutput()

        ctx, _ = make_ctx(snapshot)
        assert isinstance(Writes().invoke(request=exceedance_request(snapshot), ctx=ctx), Completed)
        assert ctx.pending_rollbacks == []

    def test_wrong_kind_is_refused(self, snapshot, make_ctx) -> None:
        ctx, _ = make_ctx(snapshot)
        request = WorkRequest(snapshot=snapshot, params=IceThrowParams())
        result = InstantRunner().invoke(request=request, ctx=ctx)
        assert isinstance(result, Failed)
        assert result.error_type == "ValidationError"
