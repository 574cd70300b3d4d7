"""Cooperative cancellation shared by the sampling and analysis stages."""

from datetime import UTC, datetime


class CancellationToken:
    """Flag observed by long-running work at its checkpoints.

    Setting the flag never interrupts a call that is already in flight.
    """

    def __init__(self) -> None:
        self._cancelled = False
        self.reason: str | None = None
        self.cancelled_at: datetime | None = None

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    def cancel(self, reason: str = "Cancelled by user") -> None:
        if self._cancelled:
            return
        self._cancelled = True
        self.reason = reason
        self.cancelled_at = datetime.now(UTC)
