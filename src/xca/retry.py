from __future__ import annotations

import logging
import random
import time
from typing import Callable, TypeVar

ResultT = TypeVar("ResultT")

logger = logging.getLogger("managedwealth.xca")


def execute_with_retry(
    operation: Callable[[], ResultT],
    *,
    should_retry: Callable[[Exception, int], bool],
    attempts: int = 3,
    base_delay_seconds: float = 0.2,
    max_delay_seconds: float = 2.0,
    label: str = "operation",
    sleep_fn: Callable[[float], None] = time.sleep,
    rand_fn: Callable[[float, float], float] = random.uniform,
) -> ResultT:
    """Call ``operation`` until it succeeds, backing off exponentially with jitter.

    Non-retryable failures and the failure of the final attempt propagate
    unchanged.
    """
    for attempt in range(1, max(1, attempts) + 1):
        try:
            return operation()
        except Exception as exc:
            if attempt >= attempts or not should_retry(exc, attempt):
                raise
            delay = min(base_delay_seconds * (2 ** (attempt - 1)), max_delay_seconds) + rand_fn(0.0, 0.1)
            logger.warning("%s failed attempt=%s/%s retry_in=%.2fs error=%s", label, attempt, attempts, delay, exc)
            sleep_fn(delay)
