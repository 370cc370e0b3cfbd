"""Cooperative cancellation signal shared by a job and its scan."""

from typing import Optional


class CancellationToken:
    """Set once by whoever wants the work to stop; polled by the worker."""

    def __init__(self):
        self._cancelled = False
        self._reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._cancelled:
            self._cancelled = True
            self._reason = reason
