"""Threaded rate-limit probing engine.

This module implements the engine that drives concurrent probes against one
(URL, token) pair until the target throttles, the run fails, or the caller
aborts, and reports the throughput achieved before throttling.

A single dispatcher (the thread calling run()) feeds a bounded queue with a
non-blocking put. Worker threads consume the queue and report back through
three channels only: an atomic success counter and two fire-once signals
(limit reached, failure). The external abort event is the third termination
signal and is owned by the caller.
"""

from __future__ import annotations

import itertools
import json
import logging
import queue
import threading
import time

from ratelimit_probe.engine.base import Engine, ProbeExecutor
from ratelimit_probe.engine.models import (
    MeasurementResult,
    OutcomeKind,
    Probe,
    ProbeConfig,
    ProbeOutcome,
    TerminationReason,
)
from ratelimit_probe.engine.probe_executor import RequestsProbeExecutor
from ratelimit_probe.engine.signals import AtomicCounter, FireOnceSignal

logger = logging.getLogger(__name__)


class ProbeFailedError(Exception):
    """Fallback cause when a failure signal fired without an exception."""


class _RunState:
    """Mutable state of a single run, shared between dispatcher and workers."""

    def __init__(self) -> None:
        self.wake = threading.Event()
        self.successes = AtomicCounter()
        self.limit_reached = FireOnceSignal("limit_reached", self.wake)
        self.failure = FireOnceSignal("failure", self.wake)
        self.halted = threading.Event()
        # Only touched by the dispatcher thread.
        self.dispatched = 0

    def stopping(self) -> bool:
        return self.halted.is_set() or self.limit_reached.is_set() or self.failure.is_set()


class RateLimitEngine(Engine):
    """Measure the request rate a target sustains before answering 429.

    Attributes:
        name: Always returns "threaded".
        config: Probe timeout and dispatcher poll interval.

    Args:
        executor: Probe executor shared by all workers. Defaults to a
            RequestsProbeExecutor using config.timeout.
        config: Tunables (default: ProbeConfig()).
        structured_logging: Emit the run summary as a JSON log entry instead
            of a plain message (default: True).

    Example:
        >>> engine = RateLimitEngine()
        >>> result = engine.run("https://api.example.com/items", token, concurrency=8)
        >>> print(f"{result.reason.value}: {result.throughput} req/s")
    """

    _run_ids = itertools.count(1)

    def __init__(
        self,
        executor: ProbeExecutor | None = None,
        config: ProbeConfig | None = None,
        structured_logging: bool = True,
    ) -> None:
        self._name = "threaded"
        self._config = config or ProbeConfig()
        self._executor = executor or RequestsProbeExecutor(timeout=self._config.timeout)
        self._structured_logging = structured_logging

    @property
    def name(self) -> str:
        return self._name

    @property
    def config(self) -> ProbeConfig:
        return self._config

    @property
    def executor(self) -> ProbeExecutor:
        return self._executor

    def run(
        self,
        url: str,
        token: str,
        concurrency: int,
        abort: threading.Event | None = None,
    ) -> MeasurementResult:
        """Probe url with concurrency workers until a termination signal fires.

        The call returns only after every worker of this run has finished its
        current probe and exited.

        Args:
            url: Target URL.
            token: Bearer token borrowed for the duration of the run.
            concurrency: Number of worker threads (at least 1).
            abort: Cooperative cancellation signal. May be set from any thread
                at any time, including before the call.

        Returns:
            A MeasurementResult with reason LIMIT_REACHED (with throughput),
            ABORTED or ERROR (with the triggering exception).

        Raises:
            ValueError: If concurrency is less than 1.
        """
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        if abort is None:
            abort = threading.Event()

        run_id = next(self._run_ids)
        state = _RunState()
        probes: queue.Queue[Probe | None] = queue.Queue(maxsize=concurrency)
        workers = [
            threading.Thread(
                target=self._work,
                args=(probes, state),
                name=f"probe-worker-{run_id}-{i}",
                daemon=True,
            )
            for i in range(concurrency)
        ]

        logger.debug("Run %d: probing %s with %d workers", run_id, url, concurrency)
        start = time.perf_counter()
        for worker in workers:
            worker.start()

        try:
            result = self._dispatch(url, token, probes, state, abort, start)
        finally:
            self._shutdown(probes, state, workers)

        self._log_result(run_id, result)
        return result

    def _dispatch(
        self,
        url: str,
        token: str,
        probes: queue.Queue[Probe | None],
        state: _RunState,
        abort: threading.Event,
        start: float,
    ) -> MeasurementResult:
        """Feed the work queue until one termination signal is observed."""
        while True:
            if state.limit_reached.is_set():
                elapsed = time.perf_counter() - start
                state.halted.set()
                successes = state.successes.swap(0)
                return MeasurementResult.limit_reached(url, successes, elapsed, state.dispatched)

            if abort.is_set():
                state.halted.set()
                return MeasurementResult.aborted(url, state.dispatched)

            if state.failure.is_set():
                state.halted.set()
                cause = state.failure.cause or ProbeFailedError("probe failed")
                return MeasurementResult.failed(url, cause, state.dispatched)

            try:
                probes.put_nowait(Probe(url, token))
            except queue.Full:
                state.wake.wait(self._config.poll_interval)
            else:
                state.dispatched += 1

    def _work(self, probes: queue.Queue[Probe | None], state: _RunState) -> None:
        """Worker loop: execute probes until the shutdown sentinel arrives."""
        try:
            self._drain_probes(probes, state)
        finally:
            release = getattr(self._executor, "release_thread", None)
            if release is not None:
                release()

    def _drain_probes(self, probes: queue.Queue[Probe | None], state: _RunState) -> None:
        while True:
            probe = probes.get()
            if probe is None:
                return
            if state.stopping():
                continue

            try:
                outcome = self._executor.execute(probe.url, probe.token)
            except Exception as e:  # pylint: disable=broad-except
                outcome = ProbeOutcome.transport_error(e)

            if outcome.kind is OutcomeKind.SUCCESS:
                if not state.halted.is_set():
                    state.successes.increment()
            elif outcome.kind is OutcomeKind.THROTTLED:
                state.limit_reached.fire()
            elif outcome.kind is OutcomeKind.TRANSPORT_ERROR:
                state.failure.fire(outcome.error)
            else:
                logger.debug("Ignoring status %d from %s", outcome.status_code, probe.url)

    @staticmethod
    def _shutdown(
        probes: queue.Queue[Probe | None],
        state: _RunState,
        workers: list[threading.Thread],
    ) -> None:
        """Close the work queue and wait for every worker to exit."""
        state.halted.set()
        while True:
            try:
                probes.get_nowait()
            except queue.Empty:
                break
        # The queue holds exactly one slot per worker and nothing else puts now.
        for _ in workers:
            probes.put(None)
        for worker in workers:
            worker.join()

    def _log_result(self, run_id: int, result: MeasurementResult) -> None:
        level = logging.WARNING if result.reason is TerminationReason.ERROR else logging.INFO
        if self._structured_logging:
            log_entry = {
                "event": "ratelimit_run_finished",
                "engine": self._name,
                "run_id": run_id,
                **result.to_dict(),
            }
            logger.log(level, json.dumps(log_entry))
        elif result.reason is TerminationReason.LIMIT_REACHED:
            logger.log(level, "Rate limit reached at: %4.2f request/sec", result.throughput)
        elif result.reason is TerminationReason.ABORTED:
            logger.log(level, "Aborting before reaching the rate limit")
        else:
            logger.log(level, "Failed to execute the rate limit probe: %s", result.error)
