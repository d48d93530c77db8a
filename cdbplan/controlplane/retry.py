"""Retry with exponential backoff for read-only and validate calls.

Only ExternalUnavailable is retried. Mutating calls and submission must not
go through here: retrying a submit after an ambiguous failure risks applying
the same changes twice.
"""

import logging
import time

from cdbplan.models.errors import ExternalUnavailable

logger = logging.getLogger(__name__)

DEFAULT_ATTEMPTS = 3
DEFAULT_DELAY_SECONDS = 1.0
BACKOFF_FACTOR = 2.0


def call_with_retry(func, *args, attempts: int = DEFAULT_ATTEMPTS,
                    delay: float = DEFAULT_DELAY_SECONDS, sleep=time.sleep,
                    description: str = "", **kwargs):
    attempts = max(1, attempts)
    wait = delay
    for attempt in range(1, attempts + 1):
        try:
            return func(*args, **kwargs)
        except ExternalUnavailable as e:
            if attempt == attempts:
                logger.error("%s failed after %d attempts: %s",
                             description or getattr(func, "__name__", "call"), attempts, e)
                raise
            logger.warning("%s unavailable (attempt %d/%d), retrying in %.1fs: %s",
                           description or getattr(func, "__name__", "call"), attempt, attempts, wait, e)
            sleep(wait)
            wait *= BACKOFF_FACTOR
