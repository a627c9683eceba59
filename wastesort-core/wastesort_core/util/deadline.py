"""Caller-controlled timeouts and cancellation for ledger operations.

A :class:`Deadline` combines an optional time budget with an optional
``threading.Event`` the caller sets to cancel.  Operations call
:meth:`Deadline.check` between suspension points (cooperative), and the session
wraps whole operations in :meth:`Deadline.run`, which hands control back to the
caller at the deadline even if the operation is stuck inside a ledger call.

A timed-out or cancelled operation says nothing about whether its ledger writes
landed; callers must re-query.
"""
import threading
import time
from concurrent import futures
from typing import Any, Callable, TypeVar

T = TypeVar("T")

_POLL_SLICE_SECONDS = 0.05


class OperationTimedOutError(RuntimeError):
    """Raised when an operation exceeded its deadline.  Ledger state is unknown."""


class OperationCancelledError(RuntimeError):
    """Raised when the caller cancelled an operation.  Ledger state is unknown."""


class Deadline:
    """Time budget plus cancellation flag for one operation.

    Parameters
    ----------
    timeout:
        Seconds from construction, or ``None`` for no time limit.
    cancel_event:
        Event the caller sets to cancel.  A private one is created if omitted.
    label:
        Operation name used in error messages.
    """

    def __init__(
        self,
        timeout: float | None = None,
        cancel_event: threading.Event | None = None,
        label: str = "operation",
    ) -> None:
        self._expires_at = None if timeout is None else time.monotonic() + timeout
        self._cancel = cancel_event if cancel_event is not None else threading.Event()
        self.label = label

    def cancel(self) -> None:
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def remaining(self) -> float | None:
        """Seconds left, clamped at 0; ``None`` when unbounded."""
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - time.monotonic())

    def check(self) -> None:
        """Raise if the operation was cancelled or ran out of time.

        Raises
        ------
        OperationCancelledError, OperationTimedOutError
        """
        if self._cancel.is_set():
            raise OperationCancelledError(f"{self.label} cancelled by caller")
        remaining = self.remaining()
        if remaining is not None and remaining <= 0:
            raise OperationTimedOutError(f"{self.label} timed out")

    def sleep(self, seconds: float) -> None:
        """Wait *seconds*, waking early (and raising) on cancel or deadline."""
        self.check()
        remaining = self.remaining()
        wait_for = seconds if remaining is None else min(seconds, remaining)
        if self._cancel.wait(wait_for):
            raise OperationCancelledError(f"{self.label} cancelled by caller")
        if remaining is not None and seconds > remaining:
            raise OperationTimedOutError(f"{self.label} timed out")

    def run(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run ``fn(*args, **kwargs)`` in a worker thread under this deadline.

        The worker keeps running after a timeout or cancel (threads cannot be
        killed); it is expected to hit :meth:`check` and stop on its own.

        Raises
        ------
        OperationCancelledError, OperationTimedOutError
            When the deadline fires before *fn* returns.
        """
        self.check()
        executor = futures.ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"wastesort-{self.label}")
        try:
            future = executor.submit(fn, *args, **kwargs)
        finally:
            executor.shutdown(wait=False)
        while True:
            remaining = self.remaining()
            slice_ = _POLL_SLICE_SECONDS if remaining is None else min(_POLL_SLICE_SECONDS, remaining)
            try:
                return future.result(timeout=slice_)
            except futures.TimeoutError:
                if future.done():
                    # fn itself raised a TimeoutError subclass; surface it.
                    return future.result()
                self.check()
