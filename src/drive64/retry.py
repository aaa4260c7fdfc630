"""
Bounded retry with a between-attempt recovery action.

Used by the version handshake and by every bulk chunk of a transfer.
Attempts are fixed in number; before each retry the policy sleeps a
fixed delay and runs the recovery action (usually a buffer purge).
No backoff, no jitter.
"""

import logging
import time
from typing import Callable, Optional, TypeVar

from .errors import RetryExhausted

log = logging.getLogger(__name__)

T = TypeVar("T")


class BoundedRetry:
    """Run an action until its result is accepted or attempts run out."""

    def __init__(self, attempts: int, delay_s: float = 0.0,
                 recover: Optional[Callable[[], None]] = None,
                 name: str = "operation"):
        if attempts < 1:
            raise ValueError("attempts must be >= 1")
        self.attempts = attempts
        self.delay_s = delay_s
        self.recover = recover
        self.name = name

    def run(self, action: Callable[[], T],
            accept: Callable[[T], bool] = bool) -> T:
        """Call *action* up to ``attempts`` times.

        Returns the first result for which ``accept(result)`` is true.

        Raises:
            RetryExhausted: every attempt was rejected.
        """
        for attempt in range(1, self.attempts + 1):
            result = action()
            if accept(result):
                if attempt > 1:
                    log.debug("%s succeeded on attempt %d/%d",
                              self.name, attempt, self.attempts)
                return result

            log.debug("%s attempt %d/%d failed", self.name, attempt, self.attempts)
            if attempt < self.attempts:
                if self.delay_s:
                    time.sleep(self.delay_s)
                if self.recover is not None:
                    self.recover()

        raise RetryExhausted(
            f"{self.name} failed after {self.attempts} attempts",
            attempts=self.attempts,
        )
