"""Retry helpers for remote store calls"""
import asyncio
from typing import Awaitable, Callable, Tuple, Type, TypeVar

from utils.logger import log_warning, log_error

T = TypeVar('T')


async def retry_operation(operation: Callable[[], Awaitable[T]],
                          operation_name: str,
                          retries: int = 3,
                          base_delay: float = 1.0,
                          retry_on: Tuple[Type[BaseException], ...] = (Exception,),
                          sleep: Callable[[float], Awaitable[None]] = asyncio.sleep) -> T:
    """
    Await an operation with exponential backoff.

    Args:
        operation: Zero-argument callable returning a fresh awaitable per attempt
        operation_name: Used in log lines
        retries: Extra attempts after the first one
        base_delay: Seconds to wait before the second attempt; doubles each time
        retry_on: Exception types worth another attempt, anything else propagates
        sleep: Awaitable sleep, swapped out in tests

    Returns:
        Whatever the operation returns on its first successful attempt
    """
    for attempt in range(retries + 1):
        try:
            return await operation()

        except retry_on as e:
            log_warning(f"[{operation_name}] Attempt {attempt + 1} failed: {e}")
            if attempt == retries:
                log_error(f"[{operation_name}] Giving up after {retries + 1} attempts")
                raise

            await sleep(base_delay * (2 ** attempt))

    raise RuntimeError(f"{operation_name} failed after {retries + 1} attempts")
