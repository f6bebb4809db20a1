"""Run coordinator: one engine run per token, all against the same target."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait

from ratelimit_probe.auth.base import TokenProvider
from ratelimit_probe.engine.base import ProbeExecutor
from ratelimit_probe.engine.models import MeasurementResult, ProbeConfig
from ratelimit_probe.engine.probe_executor import RequestsProbeExecutor
from ratelimit_probe.engine.ratelimit_engine import RateLimitEngine

logger = logging.getLogger(__name__)


def fetch_tokens(provider: TokenProvider, count: int) -> list[str]:
    """Acquire count tokens: the first via acquire(), the rest via refresh().

    Args:
        provider: Token source.
        count: Number of tokens, at least 1.

    Returns:
        The tokens in acquisition order.

    Raises:
        ValueError: If count is less than 1.
        TokenProviderError: If any acquisition or refresh fails.
    """
    if count < 1:
        raise ValueError("number of tokens must be at least 1")

    tokens = [provider.acquire()]
    for _ in range(count - 1):
        tokens.append(provider.refresh())
    logger.info("Acquired %d token(s)", len(tokens))
    return tokens


class RunCoordinator:
    """Run one RateLimitEngine per token concurrently and collect the results.

    Every run shares the same probe executor, the same target URL and the
    same abort event. A failure in one run never stops the others.

    Args:
        executor: Probe executor shared by all runs (default: RequestsProbeExecutor).
        concurrency: Worker threads per run (default: 8).
        config: Engine tunables (default: ProbeConfig()).
        structured_logging: Passed through to each engine.
    """

    def __init__(
        self,
        executor: ProbeExecutor | None = None,
        concurrency: int = 8,
        config: ProbeConfig | None = None,
        structured_logging: bool = True,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self._config = config or ProbeConfig()
        self._executor = executor or RequestsProbeExecutor(timeout=self._config.timeout)
        self._concurrency = concurrency
        self._structured_logging = structured_logging

    @property
    def concurrency(self) -> int:
        return self._concurrency

    def run(
        self,
        url: str,
        tokens: list[str],
        abort: threading.Event | None = None,
    ) -> list[MeasurementResult]:
        """Measure url once per token and wait for every run to finish.

        Args:
            url: Target URL.
            tokens: One bearer token per run.
            abort: Shared cancellation signal; setting it stops new dispatch
                in every run.

        Returns:
            One MeasurementResult per token, in token order.
        """
        if not tokens:
            return []
        if abort is None:
            abort = threading.Event()

        with ThreadPoolExecutor(
            max_workers=len(tokens), thread_name_prefix="ratelimit-run"
        ) as pool:
            futures: list[Future[MeasurementResult]] = [
                pool.submit(self._measure, url, token, abort) for token in tokens
            ]
            self._wait_all(futures)

        results: list[MeasurementResult] = []
        for future in futures:
            try:
                results.append(future.result())
            except Exception as e:  # pylint: disable=broad-except
                logger.error("Measurement run crashed: %s", e)
                results.append(MeasurementResult.failed(url, e))
        return results

    def _measure(self, url: str, token: str, abort: threading.Event) -> MeasurementResult:
        engine = RateLimitEngine(
            self._executor, self._config, structured_logging=self._structured_logging
        )
        return engine.run(url, token, self._concurrency, abort)

    def _wait_all(self, futures: list[Future[MeasurementResult]]) -> None:
        # Bounded waits keep the calling thread responsive to signal handlers.
        pending = set(futures)
        while pending:
            _, pending = wait(pending, timeout=0.5, return_when=FIRST_COMPLETED)
