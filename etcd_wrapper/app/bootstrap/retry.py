# etcd_wrapper/app/bootstrap/retry.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Optional, TypeVar

from ..errors import OperationCancelledError
from .cancellation import CancellationToken

logger = logging.getLogger("etcd_wrapper.bootstrap.retry")

T = TypeVar("T")

CanRetryPredicate = Callable[[BaseException], bool]


@dataclass(frozen=True)
class RetryResult(Generic[T]):
    """
    Outcome of `retry`: either a value or the error that ended the loop.

    A cancelled loop is a failure carrying OperationCancelledError.
    """

    value: Optional[T] = None
    error: Optional[BaseException] = None

    @classmethod
    def success(cls, value: T) -> "RetryResult[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: BaseException) -> "RetryResult[T]":
        return cls(error=error)

    @property
    def is_err(self) -> bool:
        return self.error is not None

    @property
    def cancelled(self) -> bool:
        return isinstance(self.error, OperationCancelledError)

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]


def always_retry(_: BaseException) -> bool:
    """Retry irrespective of the error raised by the operation."""
    return True


async def retry(
    operation: Callable[[], Awaitable[T]],
    *,
    name: str,
    max_attempts: int,
    backoff: float,
    can_retry: CanRetryPredicate,
    token: CancellationToken,
) -> RetryResult[T]:
    """
    Invoke `operation` at most `max_attempts` times with `backoff` seconds between attempts.

    Rules:
    - The token is checked before every attempt and during every backoff wait;
      whichever check sees it first ends the loop with a cancellation failure.
    - The first success is returned immediately.
    - When `can_retry` rejects an error the loop stops at once, without waiting.
    - After the last attempt the last error is returned.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    last_error: Optional[BaseException] = None
    for attempt in range(1, max_attempts + 1):
        if token.cancelled:
            logger.error(f"Cancellation requested, stopping retry of {name}")
            return RetryResult.failure(OperationCancelledError(name))

        try:
            value = await operation()
        except OperationCancelledError as exc:
            logger.error(f"Cancellation requested, stopping retry of {name}")
            return RetryResult.failure(exc)
        except Exception as exc:
            last_error = exc
            logger.warning(f"Attempt {attempt}/{max_attempts} of {name} failed: {exc}")
        else:
            logger.info(f"Attempt {attempt}/{max_attempts} of {name} succeeded")
            return RetryResult.success(value)

        if not can_retry(last_error):
            logger.error(f"{name} failed with a non-retriable error: {last_error}")
            return RetryResult.failure(last_error)

        if attempt == max_attempts:
            break

        if await token.sleep(backoff):
            logger.error(f"Cancellation requested during backoff, stopping retry of {name}")
            return RetryResult.failure(OperationCancelledError(name))

    logger.error(f"All {max_attempts} attempts of {name} exhausted")
    return RetryResult.failure(last_error)  # type: ignore[arg-type]
