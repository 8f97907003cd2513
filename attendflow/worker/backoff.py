from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff.

    delay(n) = min(max_delay, initial_delay * multiplier ** n), where n is the
    number of retries already made (0 for the first failure).
    """

    initial_delay: float = 10.0
    multiplier: float = 2.0
    max_delay: float = 600.0

    def delay_for(self, retried: int) -> float:
        if self.initial_delay <= 0:
            return 0.0
        # Exponent clamp keeps the float finite for very large retry budgets.
        delay = self.initial_delay * (self.multiplier ** min(max(retried, 0), 64))
        return min(self.max_delay, delay)

    def is_exhausted(self, *, failures: int, max_retry: int) -> bool:
        return failures >= max_retry
