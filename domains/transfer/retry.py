"""Bounded exponential-backoff retry for storage calls."""

import time
from dataclasses import dataclass
from typing import Callable, Optional, Tuple, TypeVar

from loguru import logger

from domains.transfer.errors import TransientStorageError

T = TypeVar("T")


@dataclass
class RetryPolicy:
    """
    Retry transient storage errors with exponential backoff.

    ``max_retries`` counts retries, not attempts: the default of one retry
    means at most two calls. The n-th retry waits ``backoff_seconds * 2**(n-1)``.
    """

    backoff_seconds: float = 2.0
    max_retries: int = 1
    sleep: Callable[[float], None] = time.sleep

    def delay_for(self, retry_number: int) -> float:
        return self.backoff_seconds * (2 ** (retry_number - 1))

    def call(self, operation: Callable[[], T], description: str = "storage call") -> Tuple[T, int]:
        """
        Run ``operation`` until it succeeds or retries are exhausted.

        Returns:
            (result, attempts)

        Raises:
            TransientStorageError: if every attempt failed transiently
            Exception: any non-transient error, immediately
        """
        attempt = 0
        last_error: Optional[TransientStorageError] = None

        while attempt <= self.max_retries:
            attempt += 1
            try:
                return operation(), attempt
            except TransientStorageError as e:
                last_error = e
                if attempt > self.max_retries:
                    break
                delay = self.delay_for(attempt)
                logger.warning(
                    f"{description}: transient error (attempt {attempt}/{self.max_retries + 1}), "
                    f"retrying in {delay:g}s - {e}"
                )
                self.sleep(delay)

        logger.error(f"{description}: failed after {attempt} attempts - {last_error}")
        raise last_error
