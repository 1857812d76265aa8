"""Bounded retry for ledger node RPC calls.

Only transport-level failures are retried. HTTP status errors and bad
payloads are final on the first attempt.
"""

import asyncio

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from taxfiller.utils.logging import get_logger

logger = get_logger(__name__)

RETRYABLE_RPC_ERRORS: tuple[type[Exception], ...] = (httpx.TransportError, asyncio.TimeoutError)


def _log_retry(retry_state: RetryCallState) -> None:
    error = retry_state.outcome.exception() if retry_state.outcome else None
    delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
    logger.warning(f"RPC attempt {retry_state.attempt_number} failed, retrying in {delay:.1f}s: {error!r}")


def rpc_retrying(max_attempts: int, min_wait: float = 0.5, max_wait: float = 5.0) -> AsyncRetrying:
    """Retry controller for one RPC call; the last error is re-raised once attempts run out."""
    return AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(min=min_wait, max=max_wait),
        retry=retry_if_exception_type(RETRYABLE_RPC_ERRORS),
        before_sleep=_log_retry,
        reraise=True,
    )
