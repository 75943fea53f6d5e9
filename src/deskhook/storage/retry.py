"""Retry utilities for storage operations.

Transient Qdrant failures (connection drops, timeouts, 5xx) are retried
with exponential backoff before surfacing as StorageError.
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Awaitable, Callable
from typing import ParamSpec, TypeVar

import httpx
from qdrant_client.http.exceptions import ResponseHandlingException, UnexpectedResponse
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from deskhook.exceptions import StorageError

logger = logging.getLogger(__name__)

P = ParamSpec("P")
R = TypeVar("R")

TRANSIENT_ERRORS = (
    httpx.ConnectError,
    httpx.TimeoutException,
    ResponseHandlingException,
)


def is_transient(exc: BaseException) -> bool:
    """Network errors and 5xx responses are worth another try; 4xx are not."""
    if isinstance(exc, UnexpectedResponse):
        return exc.status_code is not None and exc.status_code >= 500
    return isinstance(exc, TRANSIENT_ERRORS)


def _log_retry(retry_state: RetryCallState) -> None:
    logger.warning(
        "Retrying Qdrant operation",
        extra={
            "attempt": retry_state.attempt_number,
            "fn_name": retry_state.fn.__name__ if retry_state.fn else "unknown",
            "exception": str(retry_state.outcome.exception()) if retry_state.outcome else None,
        },
    )


qdrant_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.5, min=0.5, max=5),
    retry=retry_if_exception(is_transient),
    before_sleep=_log_retry,
    reraise=True,
)


def storage_operation(
    fn: Callable[P, Awaitable[R]],
) -> Callable[P, Awaitable[R]]:
    """Retry transient errors, then wrap whatever is left in StorageError."""
    retried = qdrant_retry(fn)

    @functools.wraps(fn)
    async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
        try:
            return await retried(*args, **kwargs)
        except (httpx.HTTPError, UnexpectedResponse, ResponseHandlingException) as e:
            logger.error("Qdrant operation %s failed: %s", fn.__name__, e)
            raise StorageError(f"{fn.__name__} failed: {e}") from e

    return wrapper
