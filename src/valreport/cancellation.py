"""Cooperative cancellation for running jobs."""

from __future__ import annotations

import threading

from valreport.exceptions import JobCancelledError


class CancellationToken:
    """Flag checked at stage boundaries and before each provider attempt.

    An in-flight provider call is not interrupted; the token only stops
    further work from starting.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason = "Job cancelled"

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str:
        return self._reason

    def cancel(self, reason: str = "Job cancelled") -> None:
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise JobCancelledError(self._reason)
