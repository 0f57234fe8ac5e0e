"""Error recovery mechanisms for cipherproof.

Retry policies with exponential backoff. The orchestration core never
retries on its own; callers opt in by wrapping calls with
:func:`execute_with_retry` or by using :class:`cipherproof.zkp.retry.RetryingRegistry`.
"""

import asyncio
import random
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional

from ..logging import LogContext, get_logger
from .exceptions import CipherProofError

logger = get_logger(__name__)


@dataclass
class RetryPolicy:
    """Retry policy configuration."""

    max_retries: int = 3
    base_delay: float = 0.5
    max_delay: float = 10.0
    exponential_base: float = 2.0
    jitter: bool = True
    retryable_exceptions: List[type] = field(default_factory=list)

    def __post_init__(self):
        if self.max_retries < 0:
            raise ValueError("max_retries must be non-negative")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be non-negative")

    def get_delay(self, attempt: int) -> float:
        """Get delay for the given attempt."""
        if attempt <= 0:
            return 0.0

        delay = self.base_delay * (self.exponential_base ** (attempt - 1))
        delay = min(delay, self.max_delay)

        if self.jitter:
            delay *= random.uniform(0.5, 1.5)

        return delay

    def is_retryable(self, exception: BaseException) -> bool:
        """Check whether an exception may be retried under this policy."""
        if any(isinstance(exception, exc_type) for exc_type in self.retryable_exceptions):
            return True
        return isinstance(exception, CipherProofError) and exception.retryable


async def execute_with_retry(
    policy: RetryPolicy,
    operation: str,
    func: Callable[..., Awaitable[Any]],
    *args,
    sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    **kwargs,
) -> Any:
    """Await ``func`` and retry retryable failures according to ``policy``.

    The last exception is re-raised once retries are exhausted so callers
    still see the original error type.
    """
    sleep = sleep or asyncio.sleep

    for attempt in range(policy.max_retries + 1):
        try:
            return await func(*args, **kwargs)
        except Exception as e:
            if not policy.is_retryable(e) or attempt >= policy.max_retries:
                raise

            delay = policy.get_delay(attempt + 1)
            logger.warning(
                f"Retry attempt {attempt + 1}/{policy.max_retries} for operation "
                f"'{operation}' after {delay:.2f}s delay. Error: {e}",
                context=LogContext(component="retry", operation=operation),
                exception=e,
            )
            await sleep(delay)
