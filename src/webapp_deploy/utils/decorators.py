"""Decorator utilities for cross-cutting concerns."""
import time
import logging
import functools
from typing import Any, Callable, TypeVar, cast

logger = logging.getLogger(__name__)

F = TypeVar('F', bound=Callable[..., Any])


def log_execution_time(func: F) -> F:
    """Decorator to log how long an operation took and how it ended.

    Operations that return a result record with a ``success`` attribute are
    logged as completed or failed according to that flag.

    Args:
        func: The function to decorate

    Returns:
        Decorated function that logs execution time
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        start_time = time.monotonic()
        try:
            result = func(*args, **kwargs)
        except Exception as e:
            duration = time.monotonic() - start_time
            logger.error(f"{func.__name__} raised after {duration:.2f}s: {str(e)}")
            raise
        duration = time.monotonic() - start_time
        if getattr(result, "success", True):
            logger.info(f"{func.__name__} completed in {duration:.2f}s")
        else:
            logger.warning(f"{func.__name__} failed after {duration:.2f}s")
        return result
    return cast(F, wrapper)
