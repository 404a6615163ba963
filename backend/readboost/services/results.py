"""Explicit results for store calls and the best-effort wrapper used around them."""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, TypeVar

from readboost.core.errors import ReadBoostError, StoreUnavailable
from readboost.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class StoreResult(Generic[T]):
    """Outcome of one store call."""

    ok: bool
    value: T | None = None
    error: StoreUnavailable | None = None

    @classmethod
    def succeeded(cls, value: T | None = None) -> "StoreResult[T]":
        return cls(ok=True, value=value)

    @classmethod
    def failed(cls, error: StoreUnavailable) -> "StoreResult[T]":
        return cls(ok=False, error=error)


async def attempt(
    operation: str,
    key: str,
    call: Callable[[], Awaitable[T]],
    timeout: float,
) -> StoreResult[T]:
    """
    Run a store call and capture failure as a value.

    Domain errors (InvalidArgument, UserNotFound, SessionClosed) are not store
    failures and propagate to the caller.

    @param operation - Name used in logs, e.g. "remote.get_progress"
    @param key - Document or row key the call touches
    @param call - Zero-argument coroutine factory
    @param timeout - Seconds before the call counts as failed
    """
    try:
        value = await asyncio.wait_for(call(), timeout=timeout)
    except StoreUnavailable as exc:
        return StoreResult.failed(exc)
    except ReadBoostError:
        raise
    except Exception as exc:
        return StoreResult.failed(StoreUnavailable(operation, key, exc))
    return StoreResult.succeeded(value)


async def best_effort(
    operation: str,
    key: str,
    call: Callable[[], Awaitable[Any]],
    timeout: float,
    user_id: str | None = None,
) -> StoreResult:
    """attempt() that logs a failure at WARNING and otherwise carries on."""
    result = await attempt(operation, key, call, timeout)
    if not result.ok:
        extra = {"operation": operation, "key": key}
        if user_id:
            extra["user_id"] = user_id
        logger.warning(str(result.error), extra=extra)
    return result
