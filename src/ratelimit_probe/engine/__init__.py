"""Rate-limit probing engine: probe executor, worker pool and result models."""

from ratelimit_probe.engine.base import Engine, ProbeExecutor
from ratelimit_probe.engine.models import (
    MeasurementResult,
    OutcomeKind,
    Probe,
    ProbeConfig,
    ProbeOutcome,
    TerminationReason,
)
from ratelimit_probe.engine.probe_executor import RedirectNotAllowedError, RequestsProbeExecutor
from ratelimit_probe.engine.ratelimit_engine import ProbeFailedError, RateLimitEngine
from ratelimit_probe.engine.signals import AtomicCounter, FireOnceSignal

__all__ = [
    "AtomicCounter",
    "Engine",
    "FireOnceSignal",
    "MeasurementResult",
    "OutcomeKind",
    "Probe",
    "ProbeConfig",
    "ProbeExecutor",
    "ProbeFailedError",
    "ProbeOutcome",
    "RateLimitEngine",
    "RedirectNotAllowedError",
    "RequestsProbeExecutor",
    "TerminationReason",
]
