"""Probe executor backed by the `requests` library.

Each worker thread gets its own requests Session for connection pooling.
"""

from __future__ import annotations

import threading

import requests

from ratelimit_probe.engine.base import ProbeExecutor
from ratelimit_probe.engine.models import ProbeConfig, ProbeOutcome


class RedirectNotAllowedError(Exception):
    """Raised (as a probe outcome cause) when the target answers with a redirect."""

    def __init__(self, status_code: int, location: str | None) -> None:
        super().__init__(f"redirect not allowed: {status_code} -> {location or '<no location>'}")
        self.status_code = status_code
        self.location = location


class ThreadLocalSession(threading.local):
    """Thread-local session manager for connection pooling.

    Every session handed out is also registered in a shared list so that
    close() can release connections created by worker threads.
    """

    def __init__(self, registry: list[requests.Session], lock: threading.Lock) -> None:
        super().__init__()
        self.session: requests.Session | None = None
        self._registry = registry
        self._lock = lock

    def get_session(self) -> requests.Session:
        """Get or create a session for the current thread."""
        if self.session is None:
            self.session = requests.Session()
            with self._lock:
                self._registry.append(self.session)
        return self.session

    def release(self) -> None:
        """Close and unregister the current thread's session, if any."""
        session, self.session = self.session, None
        if session is None:
            return
        with self._lock:
            if session in self._registry:
                self._registry.remove(session)
        session.close()


class RequestsProbeExecutor(ProbeExecutor):
    """Issue authenticated GET probes and classify their outcome.

    Redirects are never followed: following one could send the bearer token
    to an unrelated endpoint and would corrupt the measurement, so a 3xx
    redirect is reported as a transport error.

    Attributes:
        timeout: Upper bound in seconds for a single probe.

    Example:
        >>> executor = RequestsProbeExecutor(timeout=30.0)
        >>> outcome = executor.execute("https://api.example.com/items", token)
        >>> outcome.kind
        <OutcomeKind.SUCCESS: 'success'>
    """

    def __init__(self, timeout: float | None = None) -> None:
        self._timeout = timeout if timeout is not None else ProbeConfig().timeout
        self._sessions: list[requests.Session] = []
        self._sessions_lock = threading.Lock()
        self._session_manager = ThreadLocalSession(self._sessions, self._sessions_lock)

    @property
    def timeout(self) -> float:
        return self._timeout

    def execute(self, url: str, token: str) -> ProbeOutcome:
        """Issue one GET to url with an Authorization: Bearer header.

        Args:
            url: Target URL.
            token: Bearer token.

        Returns:
            SUCCESS for 200, THROTTLED for 429, TRANSPORT_ERROR for request
            failures and redirects, UNCLASSIFIED for anything else.
        """
        session = self._session_manager.get_session()
        try:
            response = session.get(
                url,
                headers={"Authorization": f"Bearer {token}"},
                timeout=self._timeout,
                allow_redirects=False,
            )
        except requests.RequestException as e:
            return ProbeOutcome.transport_error(e)

        try:
            return self._classify(response)
        finally:
            response.close()

    @staticmethod
    def _classify(response: requests.Response) -> ProbeOutcome:
        status_code = response.status_code
        if status_code == requests.codes.ok:
            return ProbeOutcome.success()
        if status_code == requests.codes.too_many_requests:
            return ProbeOutcome.throttled()
        if response.is_redirect:
            location = response.headers.get("Location")
            return ProbeOutcome.transport_error(
                RedirectNotAllowedError(status_code, location), status_code
            )
        return ProbeOutcome.unclassified(status_code)

    def release_thread(self) -> None:
        """Close the calling thread's session. Engine workers call this on exit."""
        self._session_manager.release()

    def close(self) -> None:
        """Close every session created by any thread."""
        with self._sessions_lock:
            sessions = list(self._sessions)
            self._sessions.clear()
        for session in sessions:
            session.close()
        self._session_manager.session = None

    def __enter__(self) -> RequestsProbeExecutor:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
