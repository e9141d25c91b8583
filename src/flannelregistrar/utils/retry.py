"""
Bounded retry policy and clock abstraction.

Remote calls and polling loops take their timing from a ``Clock`` so tests can
drive time forward without sleeping.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable, TypeVar

from flannelregistrar.utils.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class Clock:
    """Wall clock and sleep used by stores, loops and pollers."""

    def now(self) -> float:
        return time.time()

    def sleep(self, seconds: float) -> None:
        if seconds > 0:
            time.sleep(seconds)


@dataclass
class RetryPolicy:
    """
    Retry a callable a bounded number of times.

    Attributes:
        max_attempts: Total number of calls, including the first one.
        delay: Seconds to wait before the second call.
        backoff: Multiplier applied to the delay after each failure.
        sleep: Sleep function, injectable for tests.
    """

    max_attempts: int = 3
    delay: float = 2.0
    backoff: float = 1.0
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    def call(
        self,
        fn: Callable[[], T],
        retry_on: tuple[type[BaseException], ...] = (Exception,),
        description: str = "operation",
    ) -> T:
        """
        Invoke ``fn`` until it succeeds or attempts are exhausted.

        Raises:
            The last exception raised by ``fn``.
        """
        attempts = max(1, self.max_attempts)
        delay = self.delay
        for attempt in range(1, attempts + 1):
            try:
                return fn()
            except retry_on as e:
                if attempt == attempts:
                    logger.warning(
                        f"{description} failed after {attempts} attempts: {e}"
                    )
                    raise
                logger.debug(
                    f"{description} failed (attempt {attempt}/{attempts}): {e}, "
                    f"retrying in {delay:.1f}s"
                )
                self.sleep(delay)
                delay *= self.backoff
        raise RuntimeError("unreachable")  # pragma: no cover
