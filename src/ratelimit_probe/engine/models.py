"""Domain models for the rate-limit probing engine.

This module defines the core data structures shared by the probe executor,
the engine and the run coordinator.
"""

from __future__ import annotations

import math
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class OutcomeKind(str, Enum):
    """Classification of a single probe.

    Attributes:
        SUCCESS: The target answered 200 OK.
        THROTTLED: The target answered 429 Too Many Requests.
        TRANSPORT_ERROR: No usable response (network failure, bad URL, redirect).
        UNCLASSIFIED: Any other status code. Neither counted nor limiting.
    """

    SUCCESS = "success"
    THROTTLED = "throttled"
    TRANSPORT_ERROR = "transport_error"
    UNCLASSIFIED = "unclassified"


class TerminationReason(str, Enum):
    """Why a measurement run stopped.

    Attributes:
        LIMIT_REACHED: The target started throttling.
        ABORTED: The caller raised the external abort signal.
        ERROR: A probe failed at the transport level.
    """

    LIMIT_REACHED = "limit_reached"
    ABORTED = "aborted"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class Probe:
    """One request attempt against the target.

    Attributes:
        url: The URL to GET.
        token: Bearer token sent in the Authorization header.
    """

    url: str
    token: str = field(repr=False)


@dataclass(frozen=True, slots=True)
class ProbeOutcome:
    """Tagged result of executing a Probe.

    Attributes:
        kind: The outcome classification.
        status_code: HTTP status code (0 if no response was received).
        error: The transport-level cause, only set for TRANSPORT_ERROR.
    """

    kind: OutcomeKind
    status_code: int = 0
    error: BaseException | None = None

    @classmethod
    def success(cls) -> ProbeOutcome:
        return cls(OutcomeKind.SUCCESS, 200)

    @classmethod
    def throttled(cls) -> ProbeOutcome:
        return cls(OutcomeKind.THROTTLED, 429)

    @classmethod
    def transport_error(cls, error: BaseException, status_code: int = 0) -> ProbeOutcome:
        return cls(OutcomeKind.TRANSPORT_ERROR, status_code, error)

    @classmethod
    def unclassified(cls, status_code: int) -> ProbeOutcome:
        return cls(OutcomeKind.UNCLASSIFIED, status_code)


@dataclass(frozen=True, slots=True)
class MeasurementResult:
    """Result of one engine run.

    This dataclass is immutable (frozen=True) and uses slots for memory efficiency.
    Throughput, success_count and elapsed_seconds are only populated when the
    run ended with LIMIT_REACHED; an aborted or failed run makes no claim.

    Attributes:
        url: The probed URL.
        reason: Why the run stopped.
        throughput: Successful probes per second of wall-clock time.
        success_count: Successful probes counted up to limit detection.
        elapsed_seconds: Wall-clock seconds between run start and limit detection.
        dispatched: Number of probes handed to the worker pool.
        error: The exception that ended the run, for reason ERROR.
    """

    url: str
    reason: TerminationReason
    throughput: float | None = None
    success_count: int | None = None
    elapsed_seconds: float | None = None
    dispatched: int = 0
    error: BaseException | None = None

    @classmethod
    def limit_reached(
        cls, url: str, success_count: int, elapsed_seconds: float, dispatched: int
    ) -> MeasurementResult:
        """Build a LIMIT_REACHED result and compute its throughput."""
        throughput = success_count / elapsed_seconds if elapsed_seconds > 0 else 0.0
        if not math.isfinite(throughput):
            throughput = 0.0
        return cls(
            url=url,
            reason=TerminationReason.LIMIT_REACHED,
            throughput=throughput,
            success_count=success_count,
            elapsed_seconds=elapsed_seconds,
            dispatched=dispatched,
        )

    @classmethod
    def aborted(cls, url: str, dispatched: int) -> MeasurementResult:
        return cls(url=url, reason=TerminationReason.ABORTED, dispatched=dispatched)

    @classmethod
    def failed(cls, url: str, error: BaseException, dispatched: int = 0) -> MeasurementResult:
        return cls(url=url, reason=TerminationReason.ERROR, dispatched=dispatched, error=error)

    @property
    def is_limit_reached(self) -> bool:
        return self.reason is TerminationReason.LIMIT_REACHED

    def to_dict(self) -> dict[str, Any]:
        """Serializable view used by the JSON report."""
        return {
            "url": self.url,
            "reason": self.reason.value,
            "throughput": self.throughput,
            "success_count": self.success_count,
            "elapsed_seconds": self.elapsed_seconds,
            "dispatched": self.dispatched,
            "error": str(self.error) if self.error is not None else None,
        }


def _env_float(name: str, default: str) -> float:
    return float(os.getenv(name, default))


@dataclass(frozen=True, slots=True)
class ProbeConfig:
    """Tunables for probe execution and dispatch.

    Attributes:
        timeout: Upper bound in seconds for one probe. Only guards against
            hung connections, never expected to trigger (default: 600.0).
        poll_interval: Seconds the dispatcher waits when the work queue is
            full before re-checking termination signals (default: 0.005).
    """

    timeout: float = field(default_factory=lambda: _env_float("RATELIMIT_PROBE_TIMEOUT", "600.0"))
    poll_interval: float = field(
        default_factory=lambda: _env_float("RATELIMIT_PROBE_POLL_INTERVAL", "0.005")
    )

    def __post_init__(self) -> None:
        if self.timeout <= 0:
            raise ValueError("timeout must be positive")
        if self.poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
