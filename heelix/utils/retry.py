"""
Retry logic with exponential backoff for remote service calls.

Used by the embedding client: transient failures are retried a bounded
number of times, everything else is reported on the first attempt.
"""

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional


logger = logging.getLogger(__name__)


@dataclass
class RetryConfig:
    """
    Configuration for retry behavior.

    Attributes:
        max_attempts: Maximum number of attempts (including first try)
        initial_delay_ms: Initial delay in milliseconds
        max_delay_ms: Maximum delay in milliseconds
        backoff_multiplier: Multiplier for exponential backoff
        jitter: Whether to add random jitter to delay
    """
    max_attempts: int = 3
    initial_delay_ms: float = 250.0
    max_delay_ms: float = 4000.0
    backoff_multiplier: float = 2.0
    jitter: bool = True


@dataclass
class RetryResult:
    """
    Result of a retry operation.

    Attributes:
        success: Whether the operation succeeded
        result: The result value if successful
        attempts: Number of attempts made
        error: The last error if failed
        retryable: Whether the last error was one the policy retries on
        error_history: Messages from each failed attempt
    """
    success: bool
    result: Any = None
    attempts: int = 0
    error: Optional[Exception] = None
    retryable: bool = False
    error_history: List[str] = field(default_factory=list)


def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """
    Calculate delay for a given attempt with exponential backoff.

    Args:
        attempt: Attempt number (0-based)
        config: Retry configuration

    Returns:
        Delay in seconds
    """
    delay_ms = min(
        config.initial_delay_ms * (config.backoff_multiplier ** attempt),
        config.max_delay_ms
    )

    # ±25% random variation
    if config.jitter:
        jitter_factor = 0.75 + (random.random() * 0.5)
        delay_ms *= jitter_factor

    return delay_ms / 1000.0


async def retry_with_backoff(
    operation: Callable[[], Awaitable[Any]],
    config: RetryConfig,
    retry_on: tuple = (Exception,),
    operation_name: str = "operation",
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> RetryResult:
    """
    Await an operation with retry and exponential backoff.

    Exceptions outside `retry_on` end the loop immediately. Cancellation is
    never caught.

    Args:
        operation: Coroutine factory (takes no arguments)
        config: Retry configuration
        retry_on: Tuple of exception types to retry on
        operation_name: Name for logging
        sleep: Awaitable sleep, replaceable in tests

    Returns:
        RetryResult with success/failure info

    Example:
        >>> result = await retry_with_backoff(lambda: client.fetch(), RetryConfig())
        >>> if not result.success:
        ...     raise result.error
    """
    error_history = []
    attempts = max(1, config.max_attempts)

    for attempt in range(attempts):
        try:
            logger.debug(f"{operation_name}: attempt {attempt + 1}/{attempts}")
            result = await operation()

            if attempt > 0:
                logger.info(f"{operation_name} succeeded after {attempt + 1} attempts")

            return RetryResult(
                success=True,
                result=result,
                attempts=attempt + 1,
                error_history=error_history,
            )

        except retry_on as e:
            error_history.append(str(e))
            logger.warning(
                f"{operation_name} failed on attempt {attempt + 1}/{attempts}: {e}"
            )

            if attempt == attempts - 1:
                logger.error(f"{operation_name} exhausted all {attempts} attempts")
                return RetryResult(
                    success=False,
                    attempts=attempts,
                    error=e,
                    retryable=True,
                    error_history=error_history,
                )

            delay = calculate_delay(attempt, config)
            logger.debug(f"Backing off for {delay:.3f}s before retry")
            await sleep(delay)

        except Exception as e:
            error_history.append(str(e))
            logger.debug(f"{operation_name} failed with non-retryable error: {e}")
            return RetryResult(
                success=False,
                attempts=attempt + 1,
                error=e,
                error_history=error_history,
            )
