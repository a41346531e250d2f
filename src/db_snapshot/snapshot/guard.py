"""Per-target mutual exclusion and cooperative cancellation."""

import hashlib
import threading
from collections.abc import Iterator
from contextlib import contextmanager

from db_snapshot.errors import OperationCancelledError, OperationInProgressError


def target_digest(target: str) -> str:
    """Stable key for a target, so URLs with credentials are never stored."""
    return hashlib.sha256(target.encode("utf-8")).hexdigest()


class OperationGuard:
    """Non-blocking exclusion keyed by target (database URL or snapshot directory).

    Running operations live in a process-wide registry, so every engine
    that targets the same database sees the same state.  A second mutating
    operation on a busy target fails immediately instead of waiting.  The
    registry holds only in-flight operations, keyed by a SHA-256 digest of
    the target.

    Example:
        guard = OperationGuard("postgresql://localhost/app")
        with guard.acquire("restore"):
            ...
    """

    _running: dict[str, str] = {}
    _registry_lock = threading.Lock()

    def __init__(self, target: str) -> None:
        self.key = target_digest(target)

    @contextmanager
    def acquire(self, operation: str) -> Iterator[None]:
        """Hold the target for the duration of ``operation``.

        Raises:
            OperationInProgressError: If another operation holds the target.
        """
        with self._registry_lock:
            running = self._running.get(self.key)
            if running is not None:
                raise OperationInProgressError(
                    f"Cannot start {operation}: {running} is already in progress for this database"
                )
            self._running[self.key] = operation
        try:
            yield
        finally:
            with self._registry_lock:
                self._running.pop(self.key, None)

    @property
    def busy(self) -> bool:
        with self._registry_lock:
            return self.key in self._running


class CancellationToken:
    """Cooperative cancellation flag, checked at table boundaries."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, operation: str = "operation") -> None:
        if self._event.is_set():
            raise OperationCancelledError(f"{operation} cancelled")
