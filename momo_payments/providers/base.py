"""
Shared contract for mobile-money provider clients.

Each provider implements the wire-specific hooks (authentication, payment
request, status query, refund, account check, webhook parsing); this base
class owns the behavior both providers share: token caching, input
validation before any network call, the retry loop, status polling and
webhook signature checks.

Nothing raised by ``requests`` escapes a public method here: outcomes are
normalised into ``PaymentAttempt`` / ``RefundResult`` values. The only
exception that can leave a provider is ``AuthenticationError`` from
``get_access_token`` itself.
"""

from __future__ import annotations

import hashlib
import hmac
import itertools
import json
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Mapping

import requests
import structlog

from momo_payments.config import PaymentSettings
from momo_payments.errors import AuthenticationError
from momo_payments.logging_config import mask_phone
from momo_payments.providers.phone import format_phone_number, validate_phone_number
from momo_payments.providers.retry import (
    PermanentProviderError,
    RetryPolicy,
    TransientProviderError,
    call_with_retry,
)
from momo_payments.providers.token_cache import TokenCache

logger = structlog.get_logger(__name__)


class AttemptStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    TIMEOUT = "TIMEOUT"
    UNKNOWN = "UNKNOWN"


TERMINAL_ATTEMPT_STATUSES = {AttemptStatus.COMPLETED, AttemptStatus.FAILED}


@dataclass
class PaymentAttempt:
    success: bool
    status: AttemptStatus
    transaction_id: str | None = None
    error: str | None = None
    error_code: str | None = None
    expires_at: datetime | None = None
    provider_transaction_id: str | None = None  # financialTransactionId / airtel_money_id


@dataclass
class RefundResult:
    success: bool
    refund_id: str | None = None
    error: str | None = None
    error_code: str | None = None


@dataclass
class WebhookNotification:
    reference: str
    status: AttemptStatus
    provider_transaction_id: str | None = None
    raw: dict = field(default_factory=dict)


def sign_payload(body: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of a raw webhook body."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


class MobileMoneyProvider(ABC):
    name: str = ""
    display_name: str = ""

    def __init__(
        self,
        settings,
        payment_settings: PaymentSettings | None = None,
        session: requests.Session | None = None,
        token_cache: TokenCache | None = None,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], None] | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings
        self.payment_settings = payment_settings or PaymentSettings()
        self.session = session or requests.Session()
        self.token_cache = token_cache or TokenCache(
            buffer_seconds=self.payment_settings.token_expiry_buffer, clock=clock
        )
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=self.payment_settings.retry_attempts,
            base_delay=self.payment_settings.retry_base_delay,
        )
        self._sleep = sleep
        self._clock = clock

    # --- provider-specific hooks ---

    @abstractmethod
    def _authenticate(self) -> tuple[str, float]:
        """Fetch a new bearer token. Returns (token, expires_in_seconds)."""

    @abstractmethod
    def _new_reference(self, order_id: str) -> str:
        """Reference used to join the provider payment back to the order."""

    @abstractmethod
    def _submit_payment(self, token: str, reference: str, amount, msisdn: str,
                        order_id: str, customer_name: str | None, resubmission: bool = False) -> str:
        """Send the collection request. Returns the reference the provider will report on.

        ``resubmission`` is set when an earlier attempt with the same
        reference failed without a response and may have reached the provider.
        """

    @abstractmethod
    def _fetch_status(self, token: str, reference: str) -> dict:
        """Raw provider status body for a reference."""

    @abstractmethod
    def _parse_status(self, reference: str, body: dict) -> PaymentAttempt:
        """Map a provider status body to the canonical attempt."""

    @abstractmethod
    def _submit_refund(self, token: str, reference: str, amount, refund_id: str) -> str:
        """Send the refund request. Returns the refund id."""

    @abstractmethod
    def _check_account(self, token: str, msisdn: str) -> bool:
        """True if the MSISDN is an active wallet."""

    @abstractmethod
    def parse_webhook(self, payload: dict, headers: Mapping[str, str] | None = None) -> WebhookNotification:
        """Turn a provider callback body into a canonical notification.

        Raises ValueError when the body does not carry a reference.
        """

    # --- HTTP plumbing ---

    def _url(self, path: str) -> str:
        return f"{self.settings.base_url.rstrip('/')}{path}"

    def _send(self, method: str, path: str, timeout: float | None = None, **kwargs) -> requests.Response:
        """Perform one HTTP call, classifying failures as transient or permanent."""
        try:
            response = self.session.request(
                method,
                self._url(path),
                timeout=timeout or self.payment_settings.request_timeout,
                **kwargs,
            )
        except requests.exceptions.Timeout as exc:
            raise TransientProviderError("timeout") from exc
        except requests.exceptions.ConnectionError as exc:
            raise TransientProviderError("connection_error") from exc
        except requests.exceptions.RequestException as exc:
            raise TransientProviderError(str(exc)) from exc

        if response.status_code >= 400:
            if response.status_code == 401:
                # Revoked before its expiry
                self.token_cache.clear()
            message, code = self._error_details(response)
            if self.retry_policy.should_retry(response.status_code):
                raise TransientProviderError(message, response.status_code)
            raise PermanentProviderError(message, response.status_code, code)
        return response

    @staticmethod
    def _error_details(response: requests.Response) -> tuple[str, str | None]:
        try:
            body = response.json()
        except ValueError:
            return (response.text or response.reason or f"HTTP {response.status_code}"), None
        if not isinstance(body, dict):
            return f"HTTP {response.status_code}", None
        status = body.get("status") if isinstance(body.get("status"), dict) else {}
        message = (
            body.get("message")
            or body.get("error_description")
            or status.get("message")
            or f"HTTP {response.status_code}"
        )
        code = body.get("code") or status.get("code") or body.get("error")
        return str(message), (str(code) if code is not None else None)

    @staticmethod
    def _json(response: requests.Response) -> dict:
        try:
            body = response.json()
        except ValueError as exc:
            raise PermanentProviderError("Provider returned a non-JSON body", response.status_code) from exc
        if not isinstance(body, dict):
            raise PermanentProviderError("Provider returned an unexpected body", response.status_code)
        return body

    def _pause(self, seconds: float, cancel_event: threading.Event | None = None) -> None:
        if self._sleep is not None:
            self._sleep(seconds)
        elif cancel_event is not None:
            cancel_event.wait(seconds)
        else:
            time.sleep(seconds)

    def _retry(self, operation: Callable[[], Any], description: str):
        return call_with_retry(operation, self.retry_policy, self._pause, f"{self.name}_{description}")

    # --- public contract ---

    def get_access_token(self) -> str:
        cached = self.token_cache.get()
        if cached:
            return cached

        missing = self.settings.missing_settings()
        if missing:
            logger.error("provider_credentials_missing", provider=self.name, missing=missing)
            raise AuthenticationError(f"{self.display_name} credentials are not configured")

        try:
            value, expires_in = self._retry(self._authenticate, "auth")
        except (TransientProviderError, PermanentProviderError) as exc:
            logger.error("provider_auth_failed", provider=self.name, error=str(exc))
            raise AuthenticationError(f"Failed to authenticate with {self.display_name}") from exc

        self.token_cache.store(value, expires_in)
        logger.info("provider_token_obtained", provider=self.name, expires_in=expires_in)
        return value

    def validate_phone_number(self, phone: str | None) -> bool:
        return validate_phone_number(phone)

    def format_phone_number(self, phone: str) -> str:
        return format_phone_number(phone)

    def request_payment(
        self,
        amount,
        phone_number: str | None,
        order_id: str,
        customer_name: str | None = None,
        customer_email: str | None = None,
    ) -> PaymentAttempt:
        if not _is_positive_amount(amount):
            return _rejected("Amount must be greater than zero")
        if not self.validate_phone_number(phone_number):
            logger.warning("payment_phone_invalid", provider=self.name, order_id=order_id,
                           phone=mask_phone(phone_number))
            return _rejected("Invalid phone number. Use an MTN or Airtel Rwanda number (07X XXX XXXX)")

        msisdn = self.format_phone_number(phone_number)
        reference = self._new_reference(order_id)
        logger.info(
            "payment_request_started",
            provider=self.name,
            order_id=order_id,
            reference=reference,
            amount=str(amount),
            phone=mask_phone(msisdn),
        )

        attempts = itertools.count()
        try:
            token = self.get_access_token()
            transaction_id = self._retry(
                lambda: self._submit_payment(token, reference, amount, msisdn, order_id, customer_name,
                                             resubmission=next(attempts) > 0),
                "request_payment",
            )
        except AuthenticationError as exc:
            return PaymentAttempt(success=False, status=AttemptStatus.FAILED,
                                  error=str(exc), error_code="AUTHENTICATION_FAILED")
        except PermanentProviderError as exc:
            logger.error("payment_request_rejected", provider=self.name, order_id=order_id,
                         status_code=exc.status_code, code=exc.code, error=str(exc))
            return PaymentAttempt(success=False, status=AttemptStatus.FAILED,
                                  error=str(exc), error_code=exc.code or "PROVIDER_REJECTED")
        except TransientProviderError as exc:
            logger.error("payment_request_failed", provider=self.name, order_id=order_id, error=str(exc))
            return PaymentAttempt(success=False, status=AttemptStatus.FAILED,
                                  error=str(exc), error_code="PROVIDER_UNAVAILABLE")

        logger.info("payment_request_sent", provider=self.name, order_id=order_id, reference=transaction_id)
        return PaymentAttempt(
            success=True,
            status=AttemptStatus.PENDING,
            transaction_id=transaction_id,
            expires_at=datetime.fromtimestamp(self._clock(), timezone.utc)
            + timedelta(seconds=self.payment_settings.timeout_seconds),
        )

    def check_payment_status(self, reference: str) -> PaymentAttempt:
        try:
            token = self.get_access_token()
            body = self._fetch_status(token, reference)
            attempt = self._parse_status(reference, body)
        except (AuthenticationError, TransientProviderError, PermanentProviderError) as exc:
            logger.warning("payment_status_check_failed", provider=self.name, reference=reference, error=str(exc))
            return PaymentAttempt(success=False, status=AttemptStatus.UNKNOWN, transaction_id=reference,
                                  error=f"Failed to check payment status: {exc}")

        logger.info("payment_status_checked", provider=self.name, reference=reference, status=attempt.status.value)
        return attempt

    def poll_payment_status(
        self,
        reference: str,
        max_attempts: int | None = None,
        interval: float | None = None,
        cancel_event: threading.Event | None = None,
    ) -> PaymentAttempt:
        """Query the provider every ``interval`` seconds until a terminal status.

        Blocks for up to ``max_attempts * interval`` seconds; run it off the
        request-serving thread. Setting ``cancel_event`` stops the loop at the
        next tick with a TIMEOUT result.
        """
        if max_attempts is None:
            max_attempts = self.payment_settings.max_poll_attempts
        if interval is None:
            interval = self.payment_settings.poll_interval_seconds

        for _ in range(max_attempts):
            if cancel_event is not None and cancel_event.is_set():
                logger.info("payment_poll_cancelled", provider=self.name, reference=reference)
                return PaymentAttempt(success=False, status=AttemptStatus.TIMEOUT, transaction_id=reference,
                                      error="Payment polling was cancelled")

            result = self.check_payment_status(reference)
            if result.status in TERMINAL_ATTEMPT_STATUSES:
                logger.info("payment_poll_finished", provider=self.name, reference=reference,
                            status=result.status.value)
                return result

            self._pause(interval, cancel_event)

        logger.warning("payment_poll_timeout", provider=self.name, reference=reference, attempts=max_attempts)
        return PaymentAttempt(success=False, status=AttemptStatus.TIMEOUT, transaction_id=reference,
                              error="Payment request timed out")

    def refund_payment(self, reference: str, amount) -> RefundResult:
        if not _is_positive_amount(amount):
            return RefundResult(success=False, error="Amount must be greater than zero",
                                error_code="VALIDATION_ERROR")

        refund_id = self._new_refund_id(reference)
        try:
            token = self.get_access_token()
            refund_id = self._retry(lambda: self._submit_refund(token, reference, amount, refund_id), "refund")
        except AuthenticationError as exc:
            return RefundResult(success=False, error=str(exc), error_code="AUTHENTICATION_FAILED")
        except PermanentProviderError as exc:
            logger.error("refund_rejected", provider=self.name, reference=reference, error=str(exc))
            return RefundResult(success=False, error=str(exc), error_code=exc.code or "PROVIDER_REJECTED")
        except TransientProviderError as exc:
            logger.error("refund_failed", provider=self.name, reference=reference, error=str(exc))
            return RefundResult(success=False, error=str(exc), error_code="PROVIDER_UNAVAILABLE")

        logger.info("refund_initiated", provider=self.name, reference=reference, refund_id=refund_id)
        return RefundResult(success=True, refund_id=refund_id)

    def _new_refund_id(self, reference: str) -> str:
        return f"REFUND-{int(self._clock() * 1000)}-{reference}"

    def validate_account(self, phone: str | None) -> bool:
        """Best effort wallet check. Any failure reads as False."""
        if not self.validate_phone_number(phone):
            return False
        msisdn = self.format_phone_number(phone)
        try:
            token = self.get_access_token()
            active = self._check_account(token, msisdn)
        except (AuthenticationError, TransientProviderError, PermanentProviderError,
                KeyError, ValueError, AttributeError, TypeError) as exc:
            logger.info("account_validation_unavailable", provider=self.name, phone=mask_phone(msisdn),
                        error=str(exc))
            return False
        logger.info("account_validated", provider=self.name, phone=mask_phone(msisdn), active=active)
        return active

    def verify_webhook_signature(self, payload: bytes | str | dict, signature: str | None) -> bool:
        secret = self.settings.webhook_secret
        if not secret or not signature:
            return False
        if isinstance(payload, dict):
            body = json.dumps(payload, sort_keys=True).encode("utf-8")
        elif isinstance(payload, str):
            body = payload.encode("utf-8")
        else:
            body = payload
        return hmac.compare_digest(sign_payload(body, secret), signature.strip())


def _is_positive_amount(amount) -> bool:
    if isinstance(amount, bool) or not isinstance(amount, (int, float, Decimal)):
        return False
    return amount > 0


def _rejected(message: str) -> PaymentAttempt:
    return PaymentAttempt(success=False, status=AttemptStatus.FAILED, error=message,
                          error_code="VALIDATION_ERROR")


def lowercase_headers(headers: Mapping[str, str] | None) -> dict[str, str]:
    return {key.lower(): value for key, value in (headers or {}).items()}
