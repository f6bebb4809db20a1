"""Rate-limit probe.

Measure the effective request-rate limit an HTTP service enforces by driving
concurrent authenticated GET requests until it answers 429 Too Many Requests.
"""

from ratelimit_probe.auth import (
    AzureDeviceCodeTokenProvider,
    StaticTokenProvider,
    TokenProvider,
    TokenProviderError,
    TokenUsageError,
)
from ratelimit_probe.coordinator import RunCoordinator, fetch_tokens
from ratelimit_probe.engine import (
    MeasurementResult,
    OutcomeKind,
    ProbeConfig,
    ProbeOutcome,
    RateLimitEngine,
    RequestsProbeExecutor,
    TerminationReason,
)

__version__ = "0.1.0"

__all__ = [
    "AzureDeviceCodeTokenProvider",
    "MeasurementResult",
    "OutcomeKind",
    "ProbeConfig",
    "ProbeOutcome",
    "RateLimitEngine",
    "RequestsProbeExecutor",
    "RunCoordinator",
    "StaticTokenProvider",
    "TerminationReason",
    "TokenProvider",
    "TokenProviderError",
    "TokenUsageError",
    "fetch_tokens",
]
