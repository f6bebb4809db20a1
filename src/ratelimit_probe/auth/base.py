"""Token provider protocol and errors."""

from __future__ import annotations

import threading
from collections.abc import Sequence
from typing import Protocol, runtime_checkable


class TokenProviderError(Exception):
    """Raised when a bearer token cannot be acquired or refreshed."""


class TokenUsageError(TokenProviderError):
    """Raised when the provider is used out of order (refresh before acquire)."""


@runtime_checkable
class TokenProvider(Protocol):
    """Protocol for bearer-token sources.

    acquire() obtains the first token, possibly through an interactive flow.
    refresh() obtains a new token for the same principal and must not be
    called before acquire(). Both calls are blocking and may fail with
    TokenProviderError.
    """

    def acquire(self) -> str: ...

    def refresh(self) -> str: ...


class StaticTokenProvider(TokenProvider):
    """Serve pre-issued tokens.

    acquire() returns the first token; each refresh() returns the next one,
    wrapping around when the list is exhausted.

    Args:
        tokens: One or more bearer tokens.

    Raises:
        ValueError: If no non-empty token is given.
    """

    def __init__(self, tokens: Sequence[str]) -> None:
        self._tokens = [token for token in tokens if token]
        if not self._tokens:
            raise ValueError("at least one token is required")
        self._index: int | None = None
        self._lock = threading.Lock()

    def acquire(self) -> str:
        with self._lock:
            self._index = 0
            return self._tokens[0]

    def refresh(self) -> str:
        with self._lock:
            if self._index is None:
                raise TokenUsageError("acquire() must be called before refresh()")
            self._index = (self._index + 1) % len(self._tokens)
            return self._tokens[self._index]
