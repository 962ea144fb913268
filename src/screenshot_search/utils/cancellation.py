"""Cooperative cancellation for long-running background operations."""

import threading

from ..core.exceptions import OperationCancelledError


class CancellationToken:
    """Thread-safe cancellation flag shared between a caller and a worker.

    The caller keeps the token and calls ``cancel()``; the worker calls
    ``check()`` at safe points (between directories, between batches).
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def check(self) -> None:
        """Raise OperationCancelledError if cancellation was requested."""
        if self._event.is_set():
            raise OperationCancelledError("Operation cancelled")
