import functools
import inspect

from loguru import logger


def logged_job(func):
    """
    A decorator that logs job entry, exit, and exceptions.

    Features:
    - Logs the job name and parameters before execution
    - Logs exceptions and re-raises them unchanged
    - Works for both plain and async functions
    - Preserves function metadata and return values
    """

    def _params(args, kwargs) -> dict:
        sig = inspect.signature(func)
        bound_args = sig.bind(*args, **kwargs)
        bound_args.apply_defaults()
        return {k: v for k, v in bound_args.arguments.items() if k != "self"}

    if inspect.iscoroutinefunction(func):

        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs):
            logger.debug(f"Entering {func.__name__} with params: {_params(args, kwargs)}")
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                logger.error(f"{func.__name__} failed: {type(e).__name__}: {e}")
                raise
            logger.debug(f"{func.__name__} finished")
            return result

        return async_wrapper

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        logger.debug(f"Entering {func.__name__} with params: {_params(args, kwargs)}")
        try:
            result = func(*args, **kwargs)
        except Exception as e:
            logger.error(f"{func.__name__} failed: {type(e).__name__}: {e}")
            raise
        logger.debug(f"{func.__name__} finished")
        return result

    return wrapper
