"""Transaction boundary and start-up helpers for the data layer."""

from __future__ import annotations

import functools
import time
from typing import Callable, TypeVar

from sqlalchemy.exc import SQLAlchemyError

from app_logging import DBTimer, get_logger
from models import db
from results import OperationResult

T = TypeVar("T")

_logger = get_logger("lms.db")


def transactional(operation: str) -> Callable[[Callable[..., OperationResult]], Callable[..., OperationResult]]:
    """Run a data operation as one unit of work on the request's session.

    The wrapped function performs its guard checks and writes and returns an
    :class:`OperationResult`. A successful result is committed, a failed one
    rolled back. Any :class:`~sqlalchemy.exc.SQLAlchemyError` raised inside
    rolls back, is logged with its stack under ``operation`` and becomes the
    generic database failure.
    """

    def decorator(func: Callable[..., OperationResult]) -> Callable[..., OperationResult]:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> OperationResult:
            try:
                with DBTimer():
                    result = func(*args, **kwargs)
                    if result.success:
                        db.session.commit()
                    else:
                        db.session.rollback()
            except SQLAlchemyError:
                db.session.rollback()
                _logger.exception("%s failed", operation, extra={"operation": operation})
                return OperationResult.database_error()
            if not result.success:
                _logger.info(
                    "%s rejected",
                    operation,
                    extra={"operation": operation, "failure_kind": result.kind.value, "reason": result.error},
                )
            return result

        return wrapper

    return decorator


def timed_read(func: Callable[..., T]) -> Callable[..., T]:
    """Account the database time of a read-only operation to the request."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs) -> T:
        with DBTimer():
            return func(*args, **kwargs)

    return wrapper


def retry_with_backoff(
    func: Callable[[], T],
    attempts: int = 3,
    base_delay: float = 0.1,
    max_total_delay: float = 2.0,
) -> T:
    """Call ``func`` until it succeeds, sleeping exponentially longer between tries.

    Used for schema creation at start-up only; request-time operations are
    never retried.
    """

    total_delay = 0.0
    for attempt in range(1, attempts + 1):
        try:
            return func()
        except SQLAlchemyError as exc:
            _logger.warning("database not ready", extra={"attempt": attempt, "error": str(exc)})
            delay = min(base_delay * (2 ** (attempt - 1)), max_total_delay - total_delay)
            if attempt >= attempts or delay <= 0:
                raise
            time.sleep(delay)
            total_delay += delay
    raise RuntimeError("retry_with_backoff called with attempts < 1")


__all__ = ["retry_with_backoff", "timed_read", "transactional"]
