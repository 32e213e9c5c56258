"""Overall time budget carried by a request through the pipeline."""

import time
from typing import Callable, Optional

from shared.errors import DeadlineExceeded


class Deadline:
    """A monotonic-clock deadline. `None` seconds means no bound."""

    def __init__(self, seconds: Optional[float] = None,
                 clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._expires_at = None if seconds is None else clock() + seconds

    @classmethod
    def never(cls) -> 'Deadline':
        return cls(None)

    def remaining(self) -> Optional[float]:
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - self._clock())

    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0

    def timeout(self, default: float) -> float:
        """Per-call timeout: `default` capped by what is left of the deadline."""
        remaining = self.remaining()
        if remaining is None:
            return default
        if remaining <= 0:
            raise DeadlineExceeded("request deadline exceeded")
        return min(default, remaining)

    def check(self) -> None:
        if self.expired():
            raise DeadlineExceeded("request deadline exceeded")
