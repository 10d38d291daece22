from __future__ import annotations
import functools
from datetime import datetime, timezone
from typing import Callable

from gspread.exceptions import APIError
from loguru import logger

from .models import OpResult


class ScheduleError(Exception):
    kind = "error"


class ValidationError(ScheduleError):
    kind = "validation"


class NotFoundError(ScheduleError):
    kind = "not_found"


class PermissionDeniedError(ScheduleError):
    kind = "permission"


class BackingStoreError(ScheduleError):
    kind = "backing_store"


class ConsistencyWarning(UserWarning):
    """Stale or contradictory denormalized data; logged, never raised."""


def warn_consistency(context: str, msg: str, **extra) -> None:
    logger.bind(**extra).warning("{}: {}: {}", ConsistencyWarning.__name__, context, msg)


def failure(exc: BaseException, context: str) -> OpResult:
    now = datetime.now(timezone.utc).isoformat()
    if isinstance(exc, ScheduleError):
        return OpResult.fail(str(exc), exc.kind, type(exc).__name__, now)
    kind = "backing_store" if isinstance(exc, APIError) else "error"
    return OpResult.fail(f"Operation failed in {context}. {exc}", kind,
                         f"{type(exc).__name__}: {exc}", now)


def boundary(context: str) -> Callable:
    """Public entry points never raise: anything thrown becomes a failure envelope."""
    def deco(fn):
        @functools.wraps(fn)
        def wrapper(*args, **kwargs) -> OpResult:
            try:
                return fn(*args, **kwargs)
            except ScheduleError as e:
                logger.info("{} rejected: {}", context, e)
                return failure(e, context)
            except Exception as e:
                logger.exception("{} failed", context)
                return failure(e, context)
        return wrapper
    return deco
