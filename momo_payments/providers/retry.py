from typing import Callable, TypeVar

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class TransientProviderError(Exception):
    """No response, a 5xx or a 429 from the provider. Safe to retry."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class PermanentProviderError(Exception):
    """The provider understood and rejected the request. Never retried."""

    def __init__(self, message: str, status_code: int | None = None, code: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.code = code


class RetryPolicy:
    """Attempt ceiling and exponential backoff for provider calls."""

    # Status codes that are worth trying again
    RETRY_STATUS_CODES = {429}

    def __init__(self, max_attempts: int = 3, base_delay: float = 1.0, max_delay: float = 30.0):
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay

    def should_retry(self, status_code: int | None) -> bool:
        """True for connection errors/timeouts (None), 5xx and 429."""
        if status_code is None:
            return True
        if status_code >= 500:
            return True
        return status_code in self.RETRY_STATUS_CODES

    def next_delay(self, attempt: int) -> float:
        """Delay after the given 0-indexed failed attempt: 1s, 2s, 4s... capped."""
        return min(self.base_delay * (2 ** attempt), self.max_delay)

    def has_attempts_remaining(self, attempt: int) -> bool:
        return attempt + 1 < self.max_attempts


def call_with_retry(
    operation: Callable[[], T],
    policy: RetryPolicy,
    sleep: Callable[[float], None],
    description: str = "provider_request",
) -> T:
    """Run ``operation``, retrying TransientProviderError per ``policy``.

    PermanentProviderError and any other exception propagate immediately.
    The last TransientProviderError is re-raised once attempts run out.
    """
    attempt = 0
    while True:
        try:
            return operation()
        except TransientProviderError as exc:
            if not policy.has_attempts_remaining(attempt):
                logger.warning(
                    "provider_request_exhausted",
                    operation=description,
                    attempts=attempt + 1,
                    error=str(exc),
                )
                raise
            delay = policy.next_delay(attempt)
            logger.info(
                "provider_request_retry",
                operation=description,
                attempt=attempt + 1,
                delay=delay,
                status_code=exc.status_code,
            )
            sleep(delay)
            attempt += 1
