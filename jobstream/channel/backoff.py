from __future__ import annotations

from typing import Sequence

from jobstream.core.config import DEFAULT_RECONNECT_DELAYS_MS


class BackoffPolicy:
    """Fixed reconnect schedule in milliseconds.

    Attempts past the end of the schedule reuse the last delay. The policy keeps
    no state; the caller owns the attempt counter.
    """

    def __init__(self, schedule_ms: Sequence[int] = DEFAULT_RECONNECT_DELAYS_MS):
        if not schedule_ms:
            raise ValueError("Backoff schedule cannot be empty")
        if any(delay < 0 for delay in schedule_ms):
            raise ValueError("Backoff delays must be >= 0")
        self._schedule = tuple(int(delay) for delay in schedule_ms)

    @property
    def schedule_ms(self) -> tuple[int, ...]:
        return self._schedule

    def delay(self, attempt: int) -> int:
        if attempt < 0:
            raise ValueError("attempt must be >= 0")
        return self._schedule[min(attempt, len(self._schedule) - 1)]

    def delay_seconds(self, attempt: int) -> float:
        return self.delay(attempt) / 1000.0
