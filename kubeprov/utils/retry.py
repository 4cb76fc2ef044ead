import time
from dataclasses import dataclass
from typing import Callable, Optional


class RetryError(RuntimeError):
    pass


@dataclass(frozen=True)
class RetryPolicy:
    """
    max_attempts: number of probes before giving up
    interval: seconds between the first two probes
    backoff: multiplier applied to the interval after each failed probe (1.0 = constant)
    """
    max_attempts: int = 150
    interval: float = 2.0
    backoff: float = 1.0

    def delays(self):
        """Yields the sleep before each retry (max_attempts - 1 values)."""
        delay = self.interval
        for _ in range(self.max_attempts - 1):
            yield delay
            delay *= self.backoff


def wait_until(
    predicate: Callable[[], bool],
    policy: RetryPolicy,
    *,
    sleep: Callable[[float], None] = time.sleep,
    on_retry: Optional[Callable[[int], None]] = None,
) -> int:
    """
    Polls predicate until it returns True.

    Returns the attempt number that succeeded.
    Raises RetryError once policy.max_attempts probes have failed.
    on_retry: callback(attempt) after each failed probe
    """
    if policy.max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    delays = policy.delays()
    for attempt in range(1, policy.max_attempts + 1):
        if predicate():
            return attempt
        if on_retry:
            on_retry(attempt)
        if attempt == policy.max_attempts:
            break
        sleep(next(delays))
    raise RetryError(f"condition not met after {policy.max_attempts} attempts")
