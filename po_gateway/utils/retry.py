"""Retry executor with a fixed backoff schedule"""

import asyncio
import logging
import re
from typing import Awaitable, Callable, Optional, Sequence, TypeVar, Union

T = TypeVar("T")

DEFAULT_RETRY_SEQUENCE_MS = (2000, 5000, 10000)
DEFAULT_RATE_LIMIT_WAIT_MS = 60_000

_RATE_LIMITED_MS_PATTERN = re.compile(r"RATE_LIMITED:(\d+)", re.IGNORECASE)
_RETRY_AFTER_PATTERN = re.compile(r"retry after (\d+)", re.IGNORECASE)


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    sequence_ms: Sequence[int] = DEFAULT_RETRY_SEQUENCE_MS,
    should_retry: Callable[[BaseException], bool] = lambda error: True,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Run an async operation, retrying once per entry of the backoff sequence.

    Retry strategy:
    - First attempt runs immediately
    - A failure the predicate rejects is re-raised at once, no delay
    - Otherwise wait sequence_ms[i] and try again; total attempts = 1 + len(sequence_ms)
    - When every attempt fails the last error is raised

    Args:
        operation: Zero-argument coroutine factory
        sequence_ms: Delays between attempts, in milliseconds
        should_retry: Predicate deciding whether an error is retryable
        sleep: Awaitable sleep, injectable for tests
    """
    try:
        return await operation()
    except Exception as e:
        if not should_retry(e):
            raise
        last_error = e

    for attempt, delay_ms in enumerate(sequence_ms, start=1):
        logging.info(
            "Retrying after backoff",
            extra={"attempt": attempt, "delay_ms": delay_ms, "error": str(last_error)},
        )
        await sleep(delay_ms / 1000)

        try:
            return await operation()
        except Exception as e:
            if not should_retry(e):
                raise
            last_error = e

    raise last_error


def parse_retry_after(
    error: Union[BaseException, str, None],
    default_ms: int = DEFAULT_RATE_LIMIT_WAIT_MS,
) -> int:
    """
    Suggested wait in milliseconds for a rate-limit error.

    Order: numeric retry_after attribute (seconds), "RATE_LIMITED:<ms>",
    "retry after <seconds>", then the default.
    """
    retry_after: Optional[float] = getattr(error, "retry_after", None)
    if isinstance(retry_after, (int, float)) and retry_after >= 0:
        return int(retry_after * 1000)

    message = error if isinstance(error, str) else str(error or "")

    direct = _RATE_LIMITED_MS_PATTERN.search(message)
    if direct:
        return int(direct.group(1))

    header = _RETRY_AFTER_PATTERN.search(message)
    if header:
        return int(header.group(1)) * 1000

    return default_ms
