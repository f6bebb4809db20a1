"""Pytest configuration and fixtures for ratelimit-probe tests."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterator

import pytest

from benchmarks.mock_server import BackgroundMockServer, MockServerConfig, MockServerFixture
from ratelimit_probe.engine import AtomicCounter, ProbeOutcome


class ScriptedExecutor:
    """Probe executor stub whose outcome is a function of the call number.

    Call numbers start at 1 and are assigned atomically across threads.
    """

    def __init__(self, script: Callable[[int], ProbeOutcome], delay: float = 0.0) -> None:
        self._script = script
        self._delay = delay
        self._calls = AtomicCounter()
        self._lock = threading.Lock()
        self.tokens_seen: set[str] = set()
        self.urls_seen: set[str] = set()

    @property
    def calls(self) -> int:
        return self._calls.value

    def execute(self, url: str, token: str) -> ProbeOutcome:
        call_number = self._calls.increment()
        with self._lock:
            self.tokens_seen.add(token)
            self.urls_seen.add(url)
        if self._delay:
            time.sleep(self._delay)
        return self._script(call_number)


@pytest.fixture()
def scripted_executor() -> type[ScriptedExecutor]:
    """Provide the ScriptedExecutor class for building probe executor stubs."""
    return ScriptedExecutor


@pytest.fixture()
def target_url() -> str:
    return "https://api.example.com/subscriptions"


@pytest.fixture()
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove environment variables that change CLI and config defaults."""
    for name in (
        "RATELIMIT_PROBE_TENANT_ID",
        "RATELIMIT_PROBE_CLIENT_ID",
        "RATELIMIT_PROBE_TOKEN",
        "RATELIMIT_PROBE_TIMEOUT",
        "RATELIMIT_PROBE_POLL_INTERVAL",
        "RATELIMIT_PROBE_AUTHORITY_HOST",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def mock_target() -> Iterator[Callable[..., MockServerFixture]]:
    """Start mock targets on ephemeral ports; all are stopped after the test.

    Keyword arguments override MockServerConfig fields.
    """
    servers: list[BackgroundMockServer] = []

    def _start(**overrides: object) -> MockServerFixture:
        options: dict[str, object] = {"port": 0, "base_latency_ms": 1.0}
        options.update(overrides)
        background = BackgroundMockServer(MockServerConfig(**options))  # type: ignore[arg-type]
        fixture = background.start()
        servers.append(background)
        return fixture

    yield _start

    for background in servers:
        background.stop()
