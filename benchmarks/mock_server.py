#!/usr/bin/env python3
"""Mock rate-limited HTTP target for exercising the probe engine.

This module provides a local aiohttp server that behaves like a throttled,
bearer-authenticated REST resource. It supports:
- A request budget after which every request is answered with 429
- Bearer token checking (401 for missing or wrong tokens)
- Configurable fixed latency with optional seeded jitter
- Fixed status code and redirect endpoints
- Running in a background thread, for synchronous callers and tests

Usage:
    # Serve until Ctrl-C, throttling after 500 requests
    python -m benchmarks.mock_server --rate-limit-after 500

    # Then, in another shell
    ratelimit-probe --resource http://127.0.0.1:8765/probe --token dev-token
"""

from __future__ import annotations

import argparse
import asyncio
import random
import threading
from dataclasses import dataclass, field
from typing import Any

from aiohttp import web


@dataclass(frozen=True, slots=True)
class MockServerConfig:
    """Configuration for the mock target.

    Attributes:
        host: Host address to bind to (default: 127.0.0.1)
        port: Port number to listen on, 0 for an ephemeral port (default: 8765)
        base_latency_ms: Fixed latency in milliseconds added to /probe responses
        jitter_seed: Optional seed for reproducible random jitter
        rate_limit_after: Number of /probe requests served with 200 before
            every further one gets 429 (None = never throttle)
        expected_token: Bearer token /probe requires (None = accept any bearer)
        retry_after: Value of the Retry-After header on 429 responses
    """

    host: str = "127.0.0.1"
    port: int = 8765
    base_latency_ms: float = 1.0
    jitter_seed: int | None = None
    rate_limit_after: int | None = None
    expected_token: str | None = None
    retry_after: int = 1


@dataclass
class MockServer:
    """Async HTTP server emulating a throttled, authenticated resource.

    Example:
        ```python
        async def main():
            config = MockServerConfig(port=0, rate_limit_after=100)
            async with MockServer(config) as server:
                print(f"Probe {server.base_url}/probe")
        ```
    """

    config: MockServerConfig
    _request_count: int = field(default=0, init=False)
    _throttled_count: int = field(default=0, init=False)
    _random: random.Random = field(default_factory=random.Random, init=False)
    _runner: web.AppRunner | None = field(default=None, init=False)
    _site: web.TCPSite | None = field(default=None, init=False)
    _bound_port: int | None = field(default=None, init=False)

    def __post_init__(self) -> None:
        """Initialize random number generator for jitter."""
        if self.config.jitter_seed is not None:
            self._random = random.Random(self.config.jitter_seed)

    @property
    def base_url(self) -> str:
        """Get the base URL of the server."""
        port = self._bound_port or self.config.port
        return f"http://{self.config.host}:{port}"

    @property
    def request_count(self) -> int:
        """Number of authorized /probe requests handled so far."""
        return self._request_count

    @property
    def throttled_count(self) -> int:
        """Number of /probe requests answered with 429."""
        return self._throttled_count

    def _calculate_delay(self) -> float:
        base_delay = self.config.base_latency_ms / 1000.0
        if self.config.jitter_seed is not None:
            # Jitter range: 0% to 20% of base latency
            return base_delay + self._random.uniform(0, 0.2) * base_delay
        return base_delay

    def _is_authorized(self, request: web.Request) -> bool:
        scheme, _, token = request.headers.get("Authorization", "").partition(" ")
        if scheme != "Bearer" or not token:
            return False
        return self.config.expected_token is None or token == self.config.expected_token

    def _should_throttle(self) -> bool:
        self._request_count += 1
        limit = self.config.rate_limit_after
        return limit is not None and self._request_count > limit

    async def handle_health(self, request: web.Request) -> web.Response:
        """Health check, answered immediately."""
        return web.json_response({"status": "healthy", "server": "mock"})

    async def handle_probe(self, request: web.Request) -> web.Response:
        """The throttled resource: 401, then 200 until the budget is spent, then 429."""
        await asyncio.sleep(self._calculate_delay())

        if not self._is_authorized(request):
            return web.json_response({"error": "unauthorized"}, status=401)

        if self._should_throttle():
            self._throttled_count += 1
            return web.json_response(
                {"error": "rate limited", "retry_after": self.config.retry_after},
                status=429,
                headers={"Retry-After": str(self.config.retry_after)},
            )

        return web.json_response({"message": "ok", "request": self._request_count})

    async def handle_status(self, request: web.Request) -> web.Response:
        """Answer with the status code given in the path: /status/{code}."""
        try:
            code = int(request.match_info.get("code", 200))
        except ValueError:
            return web.json_response({"error": "Invalid status code"}, status=400)
        return web.Response(status=code)

    async def handle_redirect(self, request: web.Request) -> web.Response:
        """Redirect to /probe."""
        raise web.HTTPFound(location="/probe")

    def _create_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/health", self.handle_health)
        app.router.add_get("/probe", self.handle_probe)
        app.router.add_get("/status/{code}", self.handle_status)
        app.router.add_get("/redirect", self.handle_redirect)
        return app

    async def start(self) -> None:
        """Start the server.

        Raises:
            RuntimeError: If the server is already running.
        """
        if self._runner is not None:
            raise RuntimeError("Server is already running")

        self._runner = web.AppRunner(self._create_app())
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, self.config.host, self.config.port)
        await self._site.start()

        self._bound_port = self.config.port
        if self._runner.addresses:
            address = self._runner.addresses[0]
            if isinstance(address, tuple) and len(address) >= 2:
                self._bound_port = address[1]

        self._request_count = 0
        self._throttled_count = 0

    async def stop(self) -> None:
        """Stop the server.

        Raises:
            RuntimeError: If the server is not running.
        """
        if self._runner is None:
            raise RuntimeError("Server is not running")

        await self._runner.cleanup()
        self._runner = None
        self._site = None
        self._bound_port = None

    async def __aenter__(self) -> MockServer:
        await self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.stop()


class BackgroundMockServer:
    """Run a MockServer on its own event loop in a daemon thread.

    Lets synchronous code (the threaded engine, the CLI) talk to the server.

    Example:
        ```python
        with BackgroundMockServer(MockServerConfig(port=0)) as target:
            engine.run(target.probe_url, "token", concurrency=4)
        ```
    """

    def __init__(self, config: MockServerConfig, start_timeout: float = 10.0) -> None:
        self._server = MockServer(config)
        self._start_timeout = start_timeout
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(
            target=self._loop.run_forever, name="mock-server", daemon=True
        )

    @property
    def server(self) -> MockServer:
        return self._server

    def start(self) -> MockServerFixture:
        self._thread.start()
        future = asyncio.run_coroutine_threadsafe(self._server.start(), self._loop)
        future.result(timeout=self._start_timeout)
        return MockServerFixture(
            base_url=self._server.base_url, config=self._server.config, server=self._server
        )

    def stop(self) -> None:
        future = asyncio.run_coroutine_threadsafe(self._server.stop(), self._loop)
        future.result(timeout=self._start_timeout)
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join()
        self._loop.close()

    def __enter__(self) -> MockServerFixture:
        return self.start()

    def __exit__(self, *exc_info: object) -> None:
        self.stop()


@dataclass
class MockServerFixture:
    """Handle given to tests for a running mock target.

    Attributes:
        base_url: Base URL of the mock server.
        config: Configuration used to create the server.
        server: The running server, for request counters.
    """

    base_url: str
    config: MockServerConfig
    server: MockServer | None = None

    def url(self, path: str) -> str:
        """Generate a full URL for a given path."""
        if not path.startswith("/"):
            path = "/" + path
        return f"{self.base_url}{path}"

    @property
    def probe_url(self) -> str:
        return self.url("/probe")

    def status_url(self, code: int) -> str:
        """URL that always answers with the given status code."""
        return self.url(f"/status/{code}")

    @property
    def redirect_url(self) -> str:
        return self.url("/redirect")


def main() -> None:
    parser = argparse.ArgumentParser(description="Serve a mock rate-limited target")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8765)
    parser.add_argument("--latency-ms", type=float, default=1.0)
    parser.add_argument("--rate-limit-after", type=int, default=1000)
    parser.add_argument("--token", default=None, help="require this bearer token")
    args = parser.parse_args()

    config = MockServerConfig(
        host=args.host,
        port=args.port,
        base_latency_ms=args.latency_ms,
        rate_limit_after=args.rate_limit_after,
        expected_token=args.token,
    )

    async def serve() -> None:
        async with MockServer(config) as server:
            print(f"Mock target at {server.base_url}/probe (Ctrl-C to stop)")
            await asyncio.Event().wait()

    try:
        asyncio.run(serve())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
