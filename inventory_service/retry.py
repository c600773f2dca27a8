"""Bounded exponential backoff used by the store, the producer and the consumer loop."""

import time
from collections.abc import Callable
from typing import TypeVar

T = TypeVar("T")


class Backoff:
    """Exponential backoff with an upper bound.

    Attributes:
        initial: Delay before the first retry, in seconds.
        maximum: Upper bound for any delay, in seconds.
        factor: Multiplier applied after each failure.
    """

    def __init__(self, initial: float = 0.5, maximum: float = 30.0, factor: float = 2.0, sleep=time.sleep):
        self.initial = initial
        self.maximum = maximum
        self.factor = factor
        self._sleep = sleep
        self.failures = 0

    def fresh(self) -> "Backoff":
        """Return a new policy with the same parameters and no recorded failures."""
        return Backoff(self.initial, self.maximum, self.factor, sleep=self._sleep)

    def next_delay(self) -> float:
        """Return the delay for the current failure count without sleeping."""
        if self.failures == 0:
            return 0.0
        return min(self.initial * self.factor ** (self.failures - 1), self.maximum)

    def failed(self) -> float:
        """Record a failure and sleep for the resulting delay.

        Returns:
            float: The delay that was slept.
        """
        self.failures += 1
        delay = self.next_delay()
        if delay > 0:
            self._sleep(delay)
        return delay

    def reset(self) -> None:
        self.failures = 0


def retry_call(
    func: Callable[[], T],
    attempts: int,
    backoff: Backoff,
    retry_on: tuple[type[BaseException], ...],
    on_retry: Callable[[int, BaseException], None] | None = None,
) -> T:
    """Call `func` up to `attempts` times, backing off between failures.

    Exceptions outside `retry_on` propagate immediately. The last retryable
    exception is re-raised once the attempts are exhausted.
    """
    backoff.reset()
    for attempt in range(1, attempts + 1):
        try:
            return func()
        except retry_on as exc:
            if attempt == attempts:
                raise
            if on_retry is not None:
                on_retry(attempt, exc)
            backoff.failed()
    raise RuntimeError("retry_call requires at least one attempt")
