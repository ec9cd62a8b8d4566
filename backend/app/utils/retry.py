from __future__ import annotations

import logging
from typing import Awaitable, Callable, Tuple, Type, TypeVar, Union

logger = logging.getLogger(__name__)

T = TypeVar("T")

RetryOn = Union[Type[BaseException], Tuple[Type[BaseException], ...]]


async def retry_bounded(
    operation: Callable[[int], Awaitable[T]],
    *,
    max_attempts: int,
    retry_on: RetryOn,
    exhausted: Callable[[BaseException], Exception],
    label: str = "operation",
) -> T:
    """Run ``operation(attempt)`` until it succeeds or ``max_attempts`` is spent.

    Only exceptions matching ``retry_on`` trigger another attempt; anything
    else propagates untouched. On exhaustion the exception built by
    ``exhausted(last_error)`` is raised from the last error.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    last_error: BaseException | None = None
    for attempt in range(1, max_attempts + 1):
        try:
            return await operation(attempt)
        except retry_on as error:
            last_error = error
            logger.info(
                "Retryable failure",
                extra={"operation": label, "attempt": attempt, "max_attempts": max_attempts, "error": str(error)},
            )

    assert last_error is not None
    raise exhausted(last_error) from last_error
