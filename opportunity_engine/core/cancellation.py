"""Cooperative cancellation for long optimization runs."""

from threading import Event
from typing import Optional


class CancellationToken:
    """
    Checked by the optimizer between iterations; an in-flight iteration is
    never interrupted.

    Usage:
        token = CancellationToken()
        signal.signal(signal.SIGTERM, lambda *_: token.cancel("SIGTERM"))
        optimizer.run(config, cancel_token=token)
    """

    def __init__(self) -> None:
        self._event = Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until cancelled or `timeout` elapses. Returns is_cancelled."""
        return self._event.wait(timeout)
