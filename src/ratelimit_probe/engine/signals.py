"""Thread-safe primitives shared between the dispatcher and the probe workers."""

from __future__ import annotations

import threading


class AtomicCounter:
    """Integer counter with atomic increment and read-and-reset.

    Example:
        >>> counter = AtomicCounter()
        >>> counter.increment()
        1
        >>> counter.swap()
        1
        >>> counter.swap()
        0
    """

    def __init__(self, value: int = 0) -> None:
        self._value = value
        self._lock = threading.Lock()

    @property
    def value(self) -> int:
        with self._lock:
            return self._value

    def increment(self, delta: int = 1) -> int:
        """Add delta and return the new value."""
        with self._lock:
            self._value += delta
            return self._value

    def swap(self, new_value: int = 0) -> int:
        """Replace the value and return the previous one."""
        with self._lock:
            previous = self._value
            self._value = new_value
            return previous


class FireOnceSignal:
    """A latch that can be fired exactly once, from any thread.

    The first call to fire() records its cause and returns True; every later
    call is a no-op returning False. When fired, the optional wake event is
    set so a waiting dispatcher notices immediately.

    Args:
        name: Identifier used in logs and reprs.
        wake: Event to set when the signal fires.
    """

    def __init__(self, name: str, wake: threading.Event | None = None) -> None:
        self._name = name
        self._wake = wake
        self._fired = threading.Event()
        self._lock = threading.Lock()
        self._cause: BaseException | None = None

    @property
    def name(self) -> str:
        return self._name

    @property
    def cause(self) -> BaseException | None:
        """The cause passed by the winning fire() call, if any."""
        return self._cause

    def is_set(self) -> bool:
        return self._fired.is_set()

    def fire(self, cause: BaseException | None = None) -> bool:
        """Fire the signal.

        Returns:
            True for the call that fired it, False if it had already fired.
        """
        with self._lock:
            if self._fired.is_set():
                return False
            self._cause = cause
            self._fired.set()
        if self._wake is not None:
            self._wake.set()
        return True

    def wait(self, timeout: float | None = None) -> bool:
        return self._fired.wait(timeout)

    def __repr__(self) -> str:
        state = "fired" if self.is_set() else "pending"
        return f"FireOnceSignal({self._name!r}, {state})"
