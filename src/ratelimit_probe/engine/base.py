"""Protocols for the probing engine and its probe executor.

This module defines the interfaces the engine consumes and exposes, so
executors and engines can be swapped (e.g. stubbed in tests).
"""

from __future__ import annotations

import threading
from typing import Protocol, runtime_checkable

from ratelimit_probe.engine.models import MeasurementResult, ProbeOutcome


@runtime_checkable
class ProbeExecutor(Protocol):
    """Protocol for issuing one authenticated GET and classifying the outcome.

    Implementations must be safe to call from several worker threads at once
    and must report failures as ProbeOutcome values instead of raising.

    Example:
        >>> from ratelimit_probe.engine import RequestsProbeExecutor
        >>> isinstance(RequestsProbeExecutor(), ProbeExecutor)
        True
    """

    def execute(self, url: str, token: str) -> ProbeOutcome:
        """Issue one GET to url with a bearer token.

        Args:
            url: Target URL.
            token: Bearer token for the Authorization header.

        Returns:
            The classified outcome of the request.
        """
        ...


@runtime_checkable
class Engine(Protocol):
    """Protocol defining the interface for rate-limit engines.

    Attributes:
        name: A string identifier for the engine type (e.g., "threaded").
    """

    @property
    def name(self) -> str:
        """Name of the engine implementation."""
        ...

    def run(
        self,
        url: str,
        token: str,
        concurrency: int,
        abort: threading.Event | None = None,
    ) -> MeasurementResult:
        """Probe url until it throttles, the run fails, or abort is set.

        Args:
            url: Target URL.
            token: Bearer token borrowed for the duration of the run.
            concurrency: Number of worker threads.
            abort: Cooperative cancellation signal owned by the caller.

        Returns:
            A MeasurementResult describing how the run ended.
        """
        ...
