import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

DEFAULT_RETRIES = 2
DEFAULT_DELAY_SECONDS = 1.0


def error_status_code(error: BaseException) -> Optional[int]:
    """Pull an HTTP status off openai/httpx style errors, if the error carries one"""
    for attr in ("status_code", "status"):
        value = getattr(error, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(error, "response", None)
    value = getattr(response, "status_code", None)
    if isinstance(value, int):
        return value
    return None


def is_retryable_error(error: BaseException) -> bool:
    status = error_status_code(error)
    if status is None:
        return False
    return status == 429 or status >= 500


async def with_retry(
    fn: Callable[[], Awaitable[Any]],
    retries: int = DEFAULT_RETRIES,
    delay: float = DEFAULT_DELAY_SECONDS,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
) -> Any:
    """
    Await fn(), retrying on rate-limit (429) and server (5xx) errors.
    The delay doubles after every retry. Any other error, or a retryable
    one once the budget is spent, propagates unchanged.
    """
    try:
        return await fn()
    except Exception as e:
        if retries <= 0 or not is_retryable_error(e):
            raise
        logger.warning(
            f"Retryable AI provider error (status {error_status_code(e)}), "
            f"retrying in {delay:.1f}s ({retries} left)"
        )
        await sleep(delay)
        return await with_retry(fn, retries - 1, delay * 2, sleep=sleep)
