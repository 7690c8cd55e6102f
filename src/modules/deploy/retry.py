"""Bounded retry with exponential backoff for throttled API calls.

Only ThrottlingError is retried. Terminal deployment failures and
configuration errors propagate on the first occurrence.
"""

import random
import time
from dataclasses import dataclass
from typing import Callable, TypeVar

from src.modules.deploy.errors import ThrottlingError
from src.shared.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class ExponentialBackoff:
    """Exponential backoff with jitter.

    Each interval is drawn from
    ``[interval * (1 - randomization_factor), interval * (1 + randomization_factor)]``
    and the base interval is multiplied by ``multiplier`` after each retry,
    capped at ``max_interval``.

    Example with defaults (initial_interval=1, multiplier=2, randomization_factor=0.5):

    | Retry # | Base interval (s) | Randomized interval (s) |
    |---------|-------------------|-------------------------|
    | 1       | 1                 | [0.5, 1.5]              |
    | 2       | 2                 | [1, 3]                  |
    | 3       | 4                 | [2, 6]                  |
    | 4       | 8                 | [4, 12]                 |
    """

    initial_interval: float = 1.0
    multiplier: float = 2.0
    max_interval: float = 30.0
    randomization_factor: float = 0.5
    max_retries: int = 5

    def intervals(self) -> list[float]:
        """Return the sleep before each retry, one per allowed retry."""
        result: list[float] = []
        interval = self.initial_interval
        for _ in range(self.max_retries):
            low = interval * (1 - self.randomization_factor)
            high = interval * (1 + self.randomization_factor)
            result.append(random.uniform(low, high) if self.randomization_factor else interval)
            interval = min(self.max_interval, interval * self.multiplier)
        return result


def call_with_backoff(
    func: Callable[[], T],
    backoff: ExponentialBackoff,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``func``, retrying on ThrottlingError.

    Args:
        func: Zero-argument callable issuing one remote call.
        backoff: Retry policy.
        sleep: Sleep function (injectable for tests).

    Returns:
        Whatever ``func`` returns.

    Raises:
        ThrottlingError: If every attempt was throttled.
    """
    for attempt, delay in enumerate(backoff.intervals(), start=1):
        try:
            return func()
        except ThrottlingError as e:
            logger.warning(
                f"Throttled, retrying in {delay:.1f}s",
                extra={"operation": e.operation, "attempt": attempt},
            )
            sleep(delay)

    return func()
