"""Tests for the poll-loop Provider"""

import threading

import pytest

from lifecycle import (
    Completion,
    Failure,
    LifecycleRequest,
    MalformedState,
    OperationCancelled,
    Provider,
    RequestKind,
    StartFailure,
    Success,
    TerminalJobFailure,
    TimeoutFailure,
)
from lifecycle.provider import PollState

CREATE = LifecycleRequest.create({"key": "value"})


def _never_done(request, physical_id):
    return Completion(done=False)


class CountingCheck:
    def __init__(self, done_after: int):
        self.done_after = done_after
        self.calls = 0

    def __call__(self, request, physical_id):
        self.calls += 1
        return Completion(done=self.calls >= self.done_after, data={"polls": self.calls})


class TestSynchronousProvider:
    def test_returns_physical_id_without_waiting(self, clock, poll_options):
        provider = Provider(lambda request: "res-1", **poll_options)

        outcome = provider.run(CREATE)

        assert outcome == Success("res-1")
        assert outcome.ok
        assert clock.waits == []

    def test_on_event_error_is_start_failure(self, poll_options):
        def on_event(request):
            raise ValueError("invalid properties")

        outcome = Provider(on_event, **poll_options).run(CREATE)

        assert isinstance(outcome, Failure)
        assert isinstance(outcome.error, StartFailure)
        assert outcome.reason == "invalid properties"

    def test_lifecycle_errors_keep_their_class(self, poll_options):
        def on_event(request):
            raise MalformedState("bad id", "x|y")

        outcome = Provider(on_event, **poll_options).run(LifecycleRequest.update("x|y", {}))

        assert isinstance(outcome.error, MalformedState)
        assert outcome.physical_id == "x|y"

    def test_no_polling_after_on_event_failure(self, clock, poll_options):
        check = CountingCheck(done_after=1)

        def on_event(request):
            raise RuntimeError("permission denied")

        outcome = Provider(on_event, check, **poll_options).run(CREATE)

        assert isinstance(outcome.error, StartFailure)
        assert check.calls == 0
        assert clock.waits == []


class TestPollLoop:
    def test_polls_until_done(self, clock, poll_options):
        check = CountingCheck(done_after=3)
        provider = Provider(lambda r: "job-1", check, interval=30, total_timeout=3600, **poll_options)

        outcome = provider.run(CREATE)

        assert outcome == Success("job-1", {"polls": 3})
        assert clock.waits == [30, 30, 30]

    def test_times_out_with_bounded_polls(self, clock, poll_options):
        check = CountingCheck(done_after=10**9)
        start = clock.now
        provider = Provider(lambda r: "job-1", check, interval=30, total_timeout=3600, **poll_options)

        outcome = provider.run(CREATE)

        assert isinstance(outcome.error, TimeoutFailure)
        assert clock.now - start >= 3600
        assert outcome.error.elapsed >= 3600
        assert abs(check.calls - 3600 / 30) <= 1

    def test_timeout_is_independent_of_interval_alignment(self, clock, poll_options):
        provider = Provider(lambda r: "job-1", _never_done, interval=7, total_timeout=20, **poll_options)

        outcome = provider.run(CREATE)

        assert isinstance(outcome.error, TimeoutFailure)
        assert clock.waits == [7, 7, 7]

    def test_status_check_error_is_terminal(self, clock, poll_options):
        calls = []

        def check(request, physical_id):
            calls.append(physical_id)
            raise ConnectionError("network blip")

        outcome = Provider(lambda r: "job-1", check, **poll_options).run(CREATE)

        assert isinstance(outcome.error, TerminalJobFailure)
        assert outcome.reason == "network blip"
        assert calls == ["job-1"]

    def test_terminal_failure_keeps_status(self, poll_options):
        def check(request, physical_id):
            raise TerminalJobFailure("build failed", status="FAULT")

        outcome = Provider(lambda r: "job-1", check, **poll_options).run(CREATE)

        assert outcome.error.status == "FAULT"
        assert not outcome.retryable

    def test_rejects_invalid_timing(self):
        with pytest.raises(ValueError):
            Provider(lambda r: "x", interval=0)
        with pytest.raises(ValueError):
            Provider(lambda r: "x", interval=60, total_timeout=30)

    def test_unpolled_kinds_skip_the_loop(self, clock, poll_options):
        check = CountingCheck(done_after=1)
        provider = Provider(lambda r: "job-1", check, poll_kinds={RequestKind.CREATE}, **poll_options)

        outcome = provider.run(LifecycleRequest.delete("job-1"))

        assert outcome == Success("job-1")
        assert check.calls == 0
        assert clock.waits == []

    def test_polled_kind_still_waits(self, clock, poll_options):
        check = CountingCheck(done_after=1)
        provider = Provider(lambda r: "job-1", check, poll_kinds={RequestKind.CREATE}, **poll_options)

        outcome = provider.run(CREATE)

        assert outcome == Success("job-1", {"polls": 1})
        assert len(clock.waits) == 1


class TestPollState:
    def test_expires_only_after_total_timeout(self):
        state = PollState(interval=30, total_timeout=60, started_at=100)

        assert state.elapsed(130) == 30
        assert not state.expired(160)
        assert state.expired(161)


class TestWorkerAndCancellation:
    def test_start_runs_on_worker_thread(self):
        threads = []

        def on_event(request):
            threads.append(threading.current_thread())
            return "res-1"

        provider = Provider(on_event, name="worker-test")
        try:
            outcome = provider.start(CREATE).result(timeout=5)
        finally:
            provider.close()

        assert outcome == Success("res-1")
        assert threads[0] is not threading.main_thread()

    def test_cancel_interrupts_wait(self):
        started = threading.Event()

        def on_event(request):
            started.set()
            return "job-1"

        provider = Provider(on_event, _never_done, interval=600, total_timeout=3600)
        future = provider.start(CREATE)
        assert started.wait(timeout=5)
        provider.cancel()

        outcome = future.result(timeout=5)
        provider.close()

        assert isinstance(outcome.error, OperationCancelled)
        assert outcome.physical_id == "job-1"
        assert provider.cancelled
