# timing_decorator.py
import time
import functools
from typing import Callable, Any, Optional, TypeVar, cast

from amptop.app_logger import get_logger

F = TypeVar("F", bound=Callable[..., Any])

log = get_logger("timing")


def timed(label: Optional[str] = None) -> Callable[[F], F]:
    """
    Decorator that measures execution time and logs it at DEBUG level.
    The message goes to the file handler only (memory handler filters it out).
    """
    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            start = time.perf_counter()
            try:
                return func(*args, **kwargs)
            finally:
                elapsed = time.perf_counter() - start
                tag = label or func.__qualname__
                log.debug("[%s] took %.4f s", tag, elapsed)
        return cast(F, wrapper)
    return decorator
