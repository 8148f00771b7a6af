"""Registry of callbacks to resume once a flow's redirect is processed."""

from __future__ import annotations

import threading

from collections.abc import Callable

from .log import module_logger


logger = module_logger("continuations")

Continuation = Callable[[], None]


class ContinuationRegistry:
    """Maps state tokens to caller-supplied continuations.

    Each continuation is invoked at most once and removed before it
    runs, so a retried completion can never call it twice. Callables
    cannot cross a process restart; a redirect processed in a new
    process completes without its continuation.
    """

    def __init__(self) -> None:
        """Initialize the continuation registry."""
        self._continuations: dict[str, Continuation] = {}
        self._lock = threading.Lock()

    def register(self, state: str, fn: Continuation) -> None:
        """Register ``fn`` to run when ``state`` completes.

        Parameters
        ----------
        state : str
            The flow's state token.
        fn : callable
            Zero-argument callback.
        """
        if not callable(fn):
            msg = f"Continuation must be callable, got {type(fn).__name__}"
            raise TypeError(msg)
        with self._lock:
            self._continuations[state] = fn

    def take_and_invoke(self, state: str) -> bool:
        """Remove and run the continuation registered for ``state``.

        Exceptions raised by the continuation propagate to the caller.

        Returns
        -------
        bool
            True if a continuation was found and invoked.
        """
        with self._lock:
            fn = self._continuations.pop(state, None)
        if fn is None:
            return False
        logger.debug("Invoking continuation for state %s", state)
        fn()
        return True

    def discard(self, state: str) -> None:
        """Forget the continuation for ``state`` without running it."""
        with self._lock:
            self._continuations.pop(state, None)

    def clear(self) -> None:
        """Forget every registered continuation."""
        with self._lock:
            self._continuations.clear()

    def __contains__(self, state: object) -> bool:
        with self._lock:
            return state in self._continuations

    def __len__(self) -> int:
        with self._lock:
            return len(self._continuations)
