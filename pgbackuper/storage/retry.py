"""
Retry with exponential backoff for storage operations.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from .errors import OperationCancelledError, is_critical, is_retryable


logger = logging.getLogger(__name__)

T = TypeVar('T')


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff parameters for with_retry."""
    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 30.0
    backoff_factor: float = 2.0

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after the given zero-based failed attempt."""
        return min(self.initial_delay * (self.backoff_factor ** attempt), self.max_delay)


DEFAULT_RETRY_POLICY = RetryPolicy()


def with_retry(operation: Callable[[], T], policy: Optional[RetryPolicy] = None,
               cancel_event: Optional[threading.Event] = None,
               description: str = 'operation') -> T:
    """
    Run an operation, retrying transient failures.

    Critical errors (authentication, configuration) and ordinary errors are
    raised immediately. Retryable errors are retried with exponential
    backoff until max_attempts is reached, after which the last error is
    raised.

    Args:
        operation: Zero-argument callable to run
        policy: Backoff parameters (default: 3 attempts, 1s, 30s cap, x2)
        cancel_event: Event that aborts the backoff wait when set
        description: Label used in log messages

    Returns:
        Whatever the operation returns

    Raises:
        OperationCancelledError: If cancel_event is set during a backoff wait
    """
    policy = policy or DEFAULT_RETRY_POLICY
    cancel_event = cancel_event or threading.Event()
    attempts = max(1, policy.max_attempts)

    for attempt in range(attempts):
        try:
            return operation()
        except Exception as e:
            if is_critical(e) or not is_retryable(e):
                raise
            if attempt == attempts - 1:
                logger.warning(f"{description} failed after {attempts} attempts: {e}")
                raise

            delay = policy.delay_for(attempt)
            logger.info(f"{description} failed (attempt {attempt + 1}/{attempts}), retrying in {delay:.1f}s: {e}")

            if cancel_event.wait(delay):
                raise OperationCancelledError(f"{description} cancelled while waiting to retry") from e

    # range() is never empty, so the loop always returns or raises
    raise AssertionError('unreachable')
