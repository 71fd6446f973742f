"""Retry utilities with exponential backoff for page navigation."""

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
import structlog
from playwright.async_api import Error as PlaywrightError

from seek.config import settings


logger = structlog.get_logger(__name__)


def log_before_sleep(retry_state: RetryCallState) -> None:
    """tenacity before_sleep hook emitting a structured warning."""
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "navigation_retrying",
        attempt=retry_state.attempt_number,
        sleep_seconds=round(retry_state.next_action.sleep, 2) if retry_state.next_action else None,
        error=str(exc) if exc else None,
    )


def navigation_retrying(
    max_attempts: int = settings.NAVIGATION_MAX_ATTEMPTS,
    min_wait: float = settings.NAVIGATION_RETRY_MIN_SECONDS,
    max_wait: float = settings.NAVIGATION_RETRY_MAX_SECONDS,
) -> AsyncRetrying:
    """Retry controller for Playwright navigation.

    Used as ``async for attempt in navigation_retrying(): with attempt: ...``.
    Playwright timeouts are a subclass of its base Error, so both are
    retried. The last error is re-raised once max_attempts is reached.

    Args:
        max_attempts: Total attempts including the first one
        min_wait: Lower bound of the exponential wait in seconds
        max_wait: Upper bound of the exponential wait in seconds
    """
    return AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=1, min=min_wait, max=max_wait),
        retry=retry_if_exception_type(PlaywrightError),
        before_sleep=log_before_sleep,
        reraise=True,
    )
