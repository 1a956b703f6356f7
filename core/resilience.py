"""
Resilience patterns for marketplace calls.

Provides:
- Exponential backoff retry (2 ** attempt seconds, bounded retry budget)
- Grouped fan-out (bounded concurrency with a pause between groups)
"""
import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional, Sequence

from core.exceptions import RateLimitError
from core.observability import get_logger

logger = get_logger(__name__)

Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryConfig:
    """Configuration for retry behavior."""
    max_retries: int = 3
    base_delay: float = 1.0  # seconds
    exponential_base: float = 2.0
    max_delay: float = 30.0  # seconds

    def delay_for(self, attempt: int) -> float:
        """Delay before retry number attempt + 1 (attempt is zero based)."""
        return min(self.base_delay * (self.exponential_base ** attempt), self.max_delay)


async def retry_with_backoff(
    func: Callable[..., Awaitable[Any]],
    *args,
    config: Optional[RetryConfig] = None,
    retryable_exceptions: tuple = (Exception,),
    sleep: Sleep = asyncio.sleep,
    description: str = "request",
    **kwargs
) -> Any:
    """
    Execute an async function, retrying with exponential backoff.

    The first call is not a retry: with max_retries=3 the function runs at
    most four times, waiting 1s, 2s and 4s between calls.

    Args:
        func: Async function to execute
        *args: Positional arguments for func
        config: Retry configuration
        retryable_exceptions: Exceptions to retry on
        sleep: Awaitable sleep (injectable for tests)
        description: Label used in log messages
        **kwargs: Keyword arguments for func

    Returns:
        Result of func

    Raises:
        The last exception once the retry budget is exhausted
    """
    config = config or RetryConfig()

    for attempt in range(config.max_retries + 1):
        try:
            return await func(*args, **kwargs)
        except retryable_exceptions as e:
            if attempt >= config.max_retries:
                logger.error(
                    f"{description} failed after {config.max_retries} retries",
                    extra={"error": str(e)}
                )
                raise

            delay = config.delay_for(attempt)
            if isinstance(e, RateLimitError):
                message = f"Rate limited on {description}, retrying in {delay:.0f}s"
            else:
                message = f"{description} failed, retrying in {delay:.0f}s"
            logger.warning(
                message,
                extra={"attempt": attempt + 1, "delay": delay, "error": str(e)}
            )
            await sleep(delay)


async def gather_in_groups(
    factories: Sequence[Callable[[], Awaitable[Any]]],
    group_size: int = 3,
    pause: float = 0.5,
    sleep: Sleep = asyncio.sleep,
) -> List[Any]:
    """
    Run coroutine factories with at most group_size in flight.

    Groups run sequentially with a fixed pause between them. Results keep
    the input order; exceptions are returned in place, not raised.
    """
    results: List[Any] = []
    for start in range(0, len(factories), group_size):
        if start > 0 and pause > 0:
            await sleep(pause)
        group = factories[start:start + group_size]
        results.extend(
            await asyncio.gather(*(factory() for factory in group), return_exceptions=True)
        )
    return results
