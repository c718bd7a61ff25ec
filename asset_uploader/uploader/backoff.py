"""
Exponential backoff policy for retries.
"""

from dataclasses import dataclass

MAX_BACKOFF_SECONDS = 60.0


def compute_delay(
    attempt: int,
    base_delay: float,
    factor: float,
    max_delay: float = MAX_BACKOFF_SECONDS
) -> float:
    """
    Delay before retry number `attempt` (0 = first retry).

    delay = base_delay * factor ** attempt, capped at max_delay.
    """
    if attempt < 0:
        raise ValueError("attempt must be >= 0")
    try:
        delay = base_delay * (factor ** attempt)
    except OverflowError:
        return max_delay
    return min(delay, max_delay)


@dataclass(frozen=True)
class BackoffPolicy:
    """Stateless exponential backoff."""

    base_delay: float = 1.0
    factor: float = 2.0
    max_delay: float = MAX_BACKOFF_SECONDS

    def delay(self, attempt: int) -> float:
        return compute_delay(attempt, self.base_delay, self.factor, self.max_delay)
