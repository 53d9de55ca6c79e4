"""
Retry utilities with exponential backoff for platform API calls.

Only errors classified as transient are retried; auth and credential failures
fail fast.
"""
import asyncio
import random
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, Tuple, Type, TypeVar

from liveperf.errors import TransientError
from liveperf.utils.logger import log

T = TypeVar("T")


@dataclass
class RetryStats:
    """Tracks retry statistics for a single operation."""
    attempts: int = 0
    total_delay_seconds: float = 0.0
    last_error: Optional[str] = None
    errors: List[str] = field(default_factory=list)
    success: bool = False

    def record_attempt(self, error: Optional[Exception] = None, delay: float = 0.0):
        """Record a retry attempt."""
        self.attempts += 1
        self.total_delay_seconds += delay
        if error:
            error_str = f"{type(error).__name__}: {str(error)}"
            self.last_error = error_str
            self.errors.append(error_str)

    def mark_success(self):
        """Mark the operation as successful."""
        self.success = True

    @property
    def retries(self) -> int:
        return max(0, self.attempts - 1)

    def to_dict(self) -> dict:
        """Convert to dictionary for logging/storage."""
        return {
            "attempts": self.attempts,
            "total_delay_seconds": round(self.total_delay_seconds, 2),
            "success": self.success,
            "last_error": self.last_error,
            "errors": self.errors[:5]  # Cap at 5 errors
        }


# Network/API errors that look transient when an SDK raises them unwrapped
DEFAULT_RETRYABLE_EXCEPTIONS: Tuple[Type[Exception], ...] = (
    ConnectionError,
    TimeoutError,
    asyncio.TimeoutError,
)


def calculate_backoff(
    attempt: int,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    jitter: bool = True
) -> float:
    """
    Calculate delay for exponential backoff.

    Args:
        attempt: Current attempt number (1-indexed)
        base_delay: Initial delay in seconds
        max_delay: Maximum delay cap
        exponential_base: Base for exponential calculation
        jitter: Add randomness to prevent thundering herd

    Returns:
        Delay in seconds
    """
    delay = base_delay * (exponential_base ** (attempt - 1))
    delay = min(delay, max_delay)

    # Add jitter (0-25% of delay)
    if jitter:
        delay += delay * random.uniform(0, 0.25)

    return delay


def is_retryable_error(
    error: Exception,
    retryable_exceptions: Tuple[Type[Exception], ...] = DEFAULT_RETRYABLE_EXCEPTIONS,
    retryable_status_codes: Tuple[int, ...] = (429, 500, 502, 503, 504)
) -> bool:
    """
    Check if an unclassified error looks transient.

    Args:
        error: The exception to check
        retryable_exceptions: Tuple of exception types to retry
        retryable_status_codes: HTTP status codes to retry (for HTTP errors)

    Returns:
        True if error should be retried
    """
    if isinstance(error, TransientError):
        return True

    if isinstance(error, retryable_exceptions):
        return True

    error_str = str(error).lower()

    if "rate limit" in error_str or "too many requests" in error_str:
        return True

    for code in retryable_status_codes:
        if str(code) in error_str:
            return True

    if "timeout" in error_str or "timed out" in error_str:
        return True

    if "connection" in error_str and ("refused" in error_str or "reset" in error_str or "failed" in error_str):
        return True

    return False


async def retry_transient(
    operation: Callable[[], Awaitable[T]],
    operation_name: str = "operation",
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    stats: Optional[RetryStats] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Run an async operation, retrying only on TransientError.

    Args:
        operation: Zero-arg callable returning a fresh awaitable per attempt
        operation_name: Name for logging
        max_attempts: Maximum number of attempts
        base_delay: Initial delay between retries
        max_delay: Maximum delay cap
        stats: RetryStats to fill in (mutated in place)
        sleep: Awaitable sleep, replaceable in tests

    Returns:
        Result of the operation
    """
    stats = stats if stats is not None else RetryStats()

    for attempt in range(1, max_attempts + 1):
        try:
            result = await operation()
            stats.record_attempt()
            stats.mark_success()

            if attempt > 1:
                log.info(
                    f"{operation_name} succeeded on attempt {attempt} "
                    f"after {stats.total_delay_seconds:.1f}s total delay"
                )
            return result

        except TransientError as e:
            if attempt >= max_attempts:
                stats.record_attempt(error=e)
                log.error(f"{operation_name} failed after {attempt} attempts: {e}")
                raise

            delay = calculate_backoff(attempt, base_delay=base_delay, max_delay=max_delay)
            stats.record_attempt(error=e, delay=delay)

            log.warning(
                f"{operation_name} attempt {attempt} failed: {e}. "
                f"Retrying in {delay:.1f}s..."
            )
            await sleep(delay)

        except Exception as e:
            stats.record_attempt(error=e)
            raise

    raise RuntimeError("Retry exhausted")
