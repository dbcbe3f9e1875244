"""
Poll-loop engine tying an OnEvent function to an optional IsComplete function.

``Provider.run`` calls OnEvent once, then (if an IsComplete function is
configured and the request kind is one the provider polls) waits ``interval``
between status checks until the check reports done, raises, or
``total_timeout`` of wall-clock time has elapsed since polling began. Every
exception is classified into a ``Failure`` outcome; none escapes ``run``.

The clock and the wait primitive are injectable so the loop can be driven by
a fake clock in tests. By default the wait is a ``threading.Event`` wait, so
``cancel()`` interrupts an in-flight sleep and the run ends with
``OperationCancelled``. External jobs are never cancelled.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Collection, Optional

from lifecycle.errors import (
    LifecycleError,
    OperationCancelled,
    StartFailure,
    TerminalJobFailure,
    TimeoutFailure,
)
from lifecycle.requests import Completion, Failure, LifecycleRequest, Outcome, RequestKind, Success

logger = logging.getLogger(__name__)

OnEvent = Callable[[LifecycleRequest], str]
IsComplete = Callable[[LifecycleRequest, str], Completion]


@dataclass
class PollState:
    """Timing of one poll loop. Lives only for the duration of a ``run``."""

    interval: float
    total_timeout: float
    started_at: float
    polls: int = 0

    def elapsed(self, now: float) -> float:
        return now - self.started_at

    def expired(self, now: float) -> bool:
        return self.elapsed(now) > self.total_timeout


class Provider:
    """
    Runs lifecycle requests through an orchestrator's OnEvent/IsComplete pair.

    One Provider serves one orchestrator. The pipeline serializes events per
    resource, so ``run`` holds no lock of its own.
    """

    def __init__(
        self,
        on_event: OnEvent,
        is_complete: Optional[IsComplete] = None,
        *,
        interval: float = 30.0,
        total_timeout: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
        wait: Optional[Callable[[float], bool]] = None,
        name: str = "provider",
        poll_kinds: Optional[Collection[RequestKind]] = None,
    ):
        """
        Args:
            on_event: Starts or mutates the external operation and returns the
                PhysicalId. Must not block on completion.
            is_complete: Checks the external operation; ``None`` makes the
                provider synchronous.
            interval: Seconds between IsComplete calls.
            total_timeout: Upper bound in seconds on the whole poll loop.
            clock: Monotonic time source.
            wait: Sleeps for the given seconds and returns True if the run was
                cancelled meanwhile. Defaults to the provider's stop event.
            name: Label used in log lines.
            poll_kinds: Request kinds that go through the poll loop. Other
                kinds succeed as soon as OnEvent returns. ``None`` polls every
                kind.
        """
        if interval <= 0:
            raise ValueError("interval must be positive")
        if total_timeout < interval:
            raise ValueError("total_timeout must be at least one interval")
        self.on_event = on_event
        self.is_complete = is_complete
        self.interval = interval
        self.total_timeout = total_timeout
        self.name = name
        self.poll_kinds = frozenset(poll_kinds) if poll_kinds is not None else None
        self._clock = clock
        self._stopped = threading.Event()
        self._wait = wait or self._stopped.wait
        self._executor: ThreadPoolExecutor | None = None

    @property
    def cancelled(self) -> bool:
        return self._stopped.is_set()

    def run(self, request: LifecycleRequest) -> Outcome:
        logger.info("%s: %s %s", self.name, request.kind.value, request.physical_id or "(new)")
        try:
            physical_id = self.on_event(request)
        except LifecycleError as exc:
            logger.error("%s: %s failed to start: %s", self.name, request.kind.value, exc)
            return Failure(exc, request.physical_id)
        except Exception as exc:
            logger.exception("%s: %s failed to start", self.name, request.kind.value)
            return Failure(StartFailure(str(exc)), request.physical_id)

        if self.is_complete is None or not self._polls(request.kind):
            return Success(physical_id)
        return self._poll(request, physical_id)

    def _polls(self, kind: RequestKind) -> bool:
        return self.poll_kinds is None or kind in self.poll_kinds

    def _poll(self, request: LifecycleRequest, physical_id: str) -> Outcome:
        state = PollState(self.interval, self.total_timeout, self._clock())
        while True:
            if self._wait(state.interval) or self.cancelled:
                logger.warning("%s: cancelled while waiting on %s", self.name, physical_id)
                return Failure(OperationCancelled(f"Cancelled while waiting on {physical_id}"), physical_id)

            now = self._clock()
            if state.expired(now):
                error = TimeoutFailure(state.elapsed(now), state.total_timeout)
                logger.error("%s: %s on %s", self.name, error, physical_id)
                return Failure(error, physical_id)

            state.polls += 1
            try:
                completion = self.is_complete(request, physical_id)
            except LifecycleError as exc:
                logger.error("%s: %s failed: %s", self.name, physical_id, exc)
                return Failure(exc, physical_id)
            except Exception as exc:
                # Query errors are not retried; they end the run like a job failure.
                logger.exception("%s: status check for %s raised", self.name, physical_id)
                return Failure(TerminalJobFailure(str(exc)), physical_id)

            logger.debug(
                "%s: poll %d of %s after %.0fs: done=%s",
                self.name, state.polls, physical_id, state.elapsed(now), completion.done,
            )
            if completion.done:
                logger.info("%s: %s complete after %d polls", self.name, physical_id, state.polls)
                return Success(physical_id, completion.data)

    def start(self, request: LifecycleRequest) -> "Future[Outcome]":
        """Run ``request`` on the provider's dedicated worker thread."""
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=self.name)
        return self._executor.submit(self.run, request)

    def cancel(self) -> None:
        """Stop waiting. In-flight and later runs end with ``OperationCancelled``."""
        self._stopped.set()

    def close(self) -> None:
        self.cancel()
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
