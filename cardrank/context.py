from __future__ import annotations

import threading
import time
from typing import Callable, Optional

from .errors import RequestCancelled


class CallContext:
    """Deadline and cancellation state for one request.

    ``sleep`` waits on the cancellation event instead of blocking
    unconditionally, so a cancelled or expired request stops waiting at once.
    """

    def __init__(self, deadline: Optional[float] = None, clock: Callable[[], float] = time.monotonic) -> None:
        self.deadline = deadline
        self._clock = clock
        self._cancelled = threading.Event()

    @classmethod
    def with_timeout(cls, seconds: float, clock: Callable[[], float] = time.monotonic) -> "CallContext":
        return cls(deadline=clock() + seconds, clock=clock)

    def cancel(self) -> None:
        self._cancelled.set()

    def remaining(self) -> Optional[float]:
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - self._clock())

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set() or self.remaining() == 0.0

    def raise_if_cancelled(self) -> None:
        if self._cancelled.is_set():
            raise RequestCancelled("The request was cancelled.")
        if self.remaining() == 0.0:
            raise RequestCancelled("The request deadline was exceeded.")

    def sleep(self, seconds: float) -> None:
        self.raise_if_cancelled()
        remaining = self.remaining()
        if remaining is not None and remaining < seconds:
            # The deadline lands inside the delay.
            self._cancelled.wait(remaining)
            self.raise_if_cancelled()
            raise RequestCancelled("The request deadline was exceeded.")
        if self._cancelled.wait(seconds):
            raise RequestCancelled("The request was cancelled.")
