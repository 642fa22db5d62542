"""
Timing for the estimating engines.

Recalculation runs on every parameter change and benchmarking walks the
whole fleet, so both are timed. Durations go out at DEBUG; a call at or
over its ``slow_ms`` budget is promoted to WARNING.
"""
import functools
import inspect
import logging
import time
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger("steel-estimator.perf")

DEFAULT_SLOW_MS = 250.0


def _report(func: Callable, started: float, slow_ms: Optional[float], kwargs: Dict[str, Any]) -> None:
    duration_ms = round((time.perf_counter() - started) * 1000, 2)
    extra: Dict[str, Any] = {"function": func.__qualname__, "duration_ms": duration_ms}
    project_id = kwargs.get("project_id") or kwargs.get("current_project_id")
    if project_id:
        extra["project_id"] = project_id

    if slow_ms is not None and duration_ms >= slow_ms:
        logger.warning(f"{func.__qualname__} slow: {duration_ms}ms (budget {slow_ms}ms)", extra=extra)
    else:
        logger.debug(f"{func.__qualname__} took {duration_ms}ms", extra=extra)


def timed(func: Optional[Callable] = None, *, slow_ms: Optional[float] = DEFAULT_SLOW_MS):
    """
    Time a sync or async callable.

    Usage::

        @timed
        def recalculate(...):
            ...

        @timed(slow_ms=1000)
        async def apply(self, store):
            ...
    """
    def decorate(fn: Callable) -> Callable:
        if inspect.iscoroutinefunction(fn):
            @functools.wraps(fn)
            async def async_wrapper(*args, **kwargs):
                started = time.perf_counter()
                try:
                    return await fn(*args, **kwargs)
                finally:
                    _report(fn, started, slow_ms, kwargs)
            return async_wrapper

        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            started = time.perf_counter()
            try:
                return fn(*args, **kwargs)
            finally:
                _report(fn, started, slow_ms, kwargs)
        return wrapper

    if func is not None:
        return decorate(func)
    return decorate
