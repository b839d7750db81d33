import functools
import inspect
import logging
import time

logger = logging.getLogger(__name__)


class Profiler:
    """
    Decorator that logs how long synchronous and asynchronous calls take.
    Timings are logged at DEBUG, also when the call raises.
    """

    @staticmethod
    def profile(func):
        if inspect.iscoroutinefunction(func):

            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs):
                start = time.perf_counter()
                try:
                    return await func(*args, **kwargs)
                finally:
                    elapsed = time.perf_counter() - start
                    logger.debug(f"[Profiler] {func.__qualname__} took {elapsed:.4f}s")

            return async_wrapper

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs):
            start = time.perf_counter()
            try:
                return func(*args, **kwargs)
            finally:
                elapsed = time.perf_counter() - start
                logger.debug(f"[Profiler] {func.__qualname__} took {elapsed:.4f}s")

        return sync_wrapper
