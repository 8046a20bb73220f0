"""Decorators for the auth broker."""

import functools
import traceback
import uuid
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import ParamSpec, TypeVar

from .logging import logger, request_id_ctx

P = ParamSpec("P")
R = TypeVar("R")


def track_operation(
    operation_name: str,
) -> Callable[[Callable[P, Awaitable[R]]], Callable[P, Awaitable[R]]]:
    """Decorator to track broker operations with timing and error handling.

    Arguments are never logged: they carry codes and tokens.

    Args:
        operation_name: Name of the operation being tracked

    Returns:
        Decorated function with request tracking
    """

    def decorator(func: Callable[P, Awaitable[R]]) -> Callable[P, Awaitable[R]]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            # Nested operations keep the outer request id
            outer_request_id = request_id_ctx.get()
            if outer_request_id is None:
                request_id_ctx.set(str(uuid.uuid4())[:8])
            start_time = datetime.now(UTC).timestamp()

            logger.debug("Starting %s", operation_name)

            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                duration = datetime.now(UTC).timestamp() - start_time
                logger.warning(
                    "Failed %s after %.2fs: %s", operation_name, duration, str(e)
                )
                logger.debug("Traceback: %s", traceback.format_exc())
                raise
            else:
                duration = datetime.now(UTC).timestamp() - start_time
                logger.info("Completed %s in %.2fs", operation_name, duration)
            finally:
                request_id_ctx.set(outer_request_id)

            return result

        return wrapper

    return decorator
