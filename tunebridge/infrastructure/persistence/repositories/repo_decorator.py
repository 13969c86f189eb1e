"""Repository decorator for standardizing DB operations.

Wraps repository methods with:
- Structured logging with context and timing information
- Error classification by SQLAlchemy exception type
"""

import asyncio
from collections.abc import Callable, Coroutine
import functools
import time
from typing import Any, ParamSpec, TypeVar

from sqlalchemy.exc import (
    DatabaseError,
    IntegrityError,
    NoResultFound,
    OperationalError,
    SQLAlchemyError,
)

from tunebridge.config import get_logger
from tunebridge.domain.errors import TransferError

P = ParamSpec("P")
T = TypeVar("T")

logger = get_logger(__name__).bind(service="database")

# Most specific first; first match decides the log level
_ERROR_LEVELS: tuple[tuple[type[Exception], str, str], ...] = (
    (NoResultFound, "DEBUG", "DB record not found"),
    (IntegrityError, "WARNING", "DB integrity error"),
    (OperationalError, "ERROR", "DB operational error"),
    (DatabaseError, "ERROR", "DB error"),
    (SQLAlchemyError, "ERROR", "SQLAlchemy error"),
)


def db_operation(operation_name: str | None = None):
    """Decorate repository methods with consistent logging and error handling.

    Domain errors raised on purpose by the repository (LockConflict and
    friends) are logged at debug level and re-raised untouched.

    Example:
        @db_operation("claim_job")
        async def claim(self, job_id: str, worker_id: str) -> TransferJob:
            ...
    """

    def decorator(
        func: Callable[P, Coroutine[Any, Any, T]],
    ) -> Callable[P, Coroutine[Any, Any, T]]:
        func_name = operation_name or func.__name__

        if not asyncio.iscoroutinefunction(func):
            raise TypeError(
                f"db_operation can only be used with async functions, but {func_name} is not async",
            )

        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            start_time = time.perf_counter()
            repo_name = args[0].__class__.__name__ if args else "Repository"
            context = _build_log_context(kwargs)

            try:
                result = await func(*args, **kwargs)
            except TransferError as e:
                logger.debug(
                    f"DB operation rejected: {repo_name}.{func_name}",
                    operation=func_name,
                    error=str(e),
                    error_type=type(e).__name__,
                    **context,
                )
                raise
            except Exception as e:
                exec_time = (time.perf_counter() - start_time) * 1000
                level, message = "ERROR", f"Unhandled exception in {repo_name}.{func_name}"
                for error_class, error_level, label in _ERROR_LEVELS:
                    if isinstance(e, error_class):
                        level, message = error_level, f"{label}: {repo_name}.{func_name}"
                        break
                logger.log(
                    level,
                    message,
                    operation=func_name,
                    error=str(e),
                    exec_time_ms=exec_time,
                    **context,
                )
                raise

            logger.trace(
                f"DB operation completed: {repo_name}.{func_name}",
                operation=func_name,
                exec_time_ms=(time.perf_counter() - start_time) * 1000,
                **context,
            )
            return result

        return wrapper

    return decorator


def _build_log_context(kwargs: dict[str, Any]) -> dict[str, Any]:
    """Loggable scalar values from function kwargs."""
    return {
        k: v
        for k, v in kwargs.items()
        if not k.startswith("_")
        and k not in _RESERVED_KEYS
        and isinstance(v, int | str | float | bool)
    }


_RESERVED_KEYS = frozenset({"operation", "error", "error_type", "exec_time_ms"})
