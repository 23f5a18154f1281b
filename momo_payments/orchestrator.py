import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Mapping

import structlog

from momo_payments.enums import OrderStatus, PaymentMethod, PaymentStatus
from momo_payments.errors import (
    AlreadyPaidError,
    AuthenticationError,
    AuthorizationError,
    InvalidStateError,
    MissingPhoneNumberError,
    OrderNotFoundError,
    PaymentInitiationError,
    UnsupportedMethodError,
    ValidationError,
)
from momo_payments.logging_config import mask_phone
from momo_payments.models import Order
from momo_payments.order_store import OrderStore
from momo_payments.providers.base import AttemptStatus, MobileMoneyProvider
from momo_payments.providers.registry import get_provider
from momo_payments.state_machine import PaymentStateMachine

logger = structlog.get_logger(__name__)

PAYMENT_WINDOW_SECONDS = 180
DEFAULT_CANCEL_REASON = "Payment cancelled by user"

_FRIENDLY_ERRORS = {
    "insufficient funds": "Insufficient funds in your mobile money account",
    "invalid msisdn": "Invalid phone number",
    "timeout": "Payment request timed out. Please try again.",
    "timed out": "Payment request timed out. Please try again.",
    "not authorized": "Payment authorization failed",
    "transaction not found": "Transaction not found",
    "duplicate": "Duplicate payment request detected",
}


def sanitize_error_message(message: str | None) -> str:
    """Customer-facing wording for a provider error."""
    lower = (message or "").lower()
    for needle, friendly in _FRIENDLY_ERRORS.items():
        if needle in lower:
            return friendly
    return "Payment processing failed. Please try again or contact support."


@dataclass
class PaymentView:
    """What the API reports about an order's payment."""

    order_id: str
    status: str
    transaction_id: str | None = None
    paid_at: datetime | None = None
    order_status: str | None = None
    message: str | None = None
    expires_in: int | None = None


class PaymentOrchestrator:
    """Drives mobile-money payments for orders.

    Depends only on the ``MobileMoneyProvider`` contract; the concrete
    client is picked from ``providers`` by the order's payment provider.
    Provider outcomes come back as data. Only authorization, validation and
    invalid-state problems are raised.
    """

    def __init__(
        self,
        store: OrderStore,
        providers: Mapping[str, MobileMoneyProvider],
        state_machine: PaymentStateMachine,
        payment_window_seconds: int = PAYMENT_WINDOW_SECONDS,
    ):
        self.store = store
        self.providers = providers
        self.state_machine = state_machine
        self.payment_window_seconds = payment_window_seconds

    # --- helpers ---

    def _load_order(self, order_id: str, user_id: str, allow_admin: bool = False) -> Order:
        order = self.store.find_by_id(order_id)
        if order is None:
            raise OrderNotFoundError("Order not found")
        if order.user_id != user_id and not allow_admin:
            raise AuthorizationError("Not authorized")
        return order

    @staticmethod
    def _require_payable(order: Order) -> None:
        if order.payment_status == PaymentStatus.REFUNDED.value:
            raise InvalidStateError("Order payment has been refunded")
        if order.order_status == OrderStatus.CANCELLED.value:
            raise InvalidStateError("Order has been cancelled")

    @staticmethod
    def _require_mobile_money(order: Order) -> None:
        info = order.payment_info
        if info.method != PaymentMethod.MOBILE_MONEY.value:
            raise UnsupportedMethodError("Real-time payment only available for mobile money")
        if not info.phone_number:
            raise MissingPhoneNumberError("Phone number is required for mobile money payment")

    def _start(self, order: Order, provider: MobileMoneyProvider) -> Order:
        """Request the payment from the customer's phone and record the reference."""
        # One token fetch serves both the account check and the request
        try:
            provider.get_access_token()
        except AuthenticationError as exc:
            logger.warning("payment_initiation_failed", order_id=order.id, provider=provider.name,
                           error_code="AUTHENTICATION_FAILED", error=str(exc))
            raise PaymentInitiationError(sanitize_error_message(str(exc)), "AUTHENTICATION_FAILED") from exc

        if not provider.validate_account(order.payment_phone):
            # Best effort only: account lookup may be unavailable
            logger.warning("payment_account_unverified", order_id=order.id, provider=provider.name,
                           phone=mask_phone(order.payment_phone))

        attempt = provider.request_payment(
            amount=order.total_price,
            phone_number=order.payment_phone,
            order_id=order.id,
            customer_name=order.customer_name,
            customer_email=order.customer_email,
        )
        if not attempt.success:
            logger.warning("payment_initiation_failed", order_id=order.id, provider=provider.name,
                           error_code=attempt.error_code, error=attempt.error)
            if attempt.error_code == "VALIDATION_ERROR":
                raise ValidationError(attempt.error or "Invalid payment request")
            raise PaymentInitiationError(sanitize_error_message(attempt.error), attempt.error_code)

        result = self.state_machine.start_payment(order, attempt.transaction_id)
        if not result.applied:
            raise InvalidStateError("Order payment changed while the request was being sent")
        logger.info("payment_initiated", order_id=order.id, provider=provider.name,
                    transaction_id=attempt.transaction_id)
        return result.order

    # --- operations ---

    def initiate_payment(self, order_id: str, user_id: str) -> PaymentView:
        order = self._load_order(order_id, user_id)
        status = order.payment_status
        if status == PaymentStatus.COMPLETED.value:
            raise AlreadyPaidError("Order is already paid")
        self._require_payable(order)
        self._require_mobile_money(order)
        provider = get_provider(self.providers, order.payment_info.provider)

        order = self._start(order, provider)
        return PaymentView(
            order_id=order.id,
            status=AttemptStatus.PENDING.value,
            transaction_id=order.transaction_id,
            order_status=order.order_status,
            message="Payment request sent to your phone. Please check your phone and authorize the payment.",
            expires_in=self.payment_window_seconds,
        )

    def check_status(self, order_id: str, user_id: str, is_admin: bool = False) -> PaymentView:
        order = self._load_order(order_id, user_id, allow_admin=is_admin)
        status = order.payment_status

        # Terminal results are served from the order without touching the provider
        if status in (PaymentStatus.COMPLETED.value, PaymentStatus.FAILED.value, PaymentStatus.REFUNDED.value):
            return self._view(order, status.upper())

        if order.payment_method != PaymentMethod.MOBILE_MONEY.value or not order.transaction_id:
            return self._view(order, status.upper())

        provider = get_provider(self.providers, order.payment_info.provider)
        attempt = provider.check_payment_status(order.transaction_id)
        reported = attempt.status.value
        if attempt.status in (AttemptStatus.COMPLETED, AttemptStatus.FAILED):
            order = self._record_outcome(order, attempt.status, order.transaction_id)
            # The write may have been skipped; report what the order holds
            reported = order.payment_status.upper()

        message = None
        if reported == AttemptStatus.UNKNOWN.value:
            message = "Could not reach the payment provider. Please check back shortly."
        elif reported == AttemptStatus.FAILED.value:
            message = "Payment failed. Please try again."
        return self._view(order, reported, message=message)

    def process_with_polling(
        self,
        order_id: str,
        user_id: str,
        cancel_event: threading.Event | None = None,
    ) -> PaymentView:
        """Initiate if needed, then wait for the outcome for up to the payment window.

        The order is read at entry and written at the terminal transition only;
        nothing is held open while polling.
        """
        order = self._load_order(order_id, user_id)
        if order.payment_status == PaymentStatus.COMPLETED.value:
            return self._view(order, AttemptStatus.COMPLETED.value, message="Payment already completed")
        self._require_payable(order)
        self._require_mobile_money(order)
        provider = get_provider(self.providers, order.payment_info.provider)

        if not order.transaction_id or order.payment_status == PaymentStatus.FAILED.value:
            order = self._start(order, provider)
        reference = order.transaction_id

        outcome = provider.poll_payment_status(reference, cancel_event=cancel_event)

        if outcome.status in (AttemptStatus.COMPLETED, AttemptStatus.FAILED):
            order = self._record_outcome(order, outcome.status, reference)
            if order.payment_status == PaymentStatus.COMPLETED.value:
                return self._view(order, AttemptStatus.COMPLETED.value, message="Payment completed successfully")
            return self._view(order, AttemptStatus.FAILED.value, message="Payment failed. Please try again.")

        # TIMEOUT: the payment may still land through the webhook
        logger.info("payment_poll_window_elapsed", order_id=order.id, reference=reference)
        return self._view(order, AttemptStatus.TIMEOUT.value,
                          message="Payment confirmation is taking longer than expected. Please check back later.")

    def cancel_pending_payment(self, order_id: str, user_id: str,
                               reason: str = DEFAULT_CANCEL_REASON) -> PaymentView:
        order = self._load_order(order_id, user_id)
        if order.payment_status != PaymentStatus.PENDING.value:
            raise InvalidStateError("Can only cancel pending payments")
        result = self.state_machine.cancel(order, reason)
        if not result.applied:
            raise InvalidStateError("Can only cancel pending payments")
        logger.info("payment_cancelled", order_id=order.id)
        return self._view(result.order, "CANCELLED", message="Payment cancelled successfully")

    def refund_payment(self, order_id: str, user_id: str, is_admin: bool = False) -> PaymentView:
        if not is_admin:
            raise AuthorizationError("Only administrators can refund payments")
        order = self._load_order(order_id, user_id, allow_admin=True)
        if order.payment_status != PaymentStatus.COMPLETED.value:
            raise InvalidStateError("Only completed payments can be refunded")
        self._require_mobile_money(order)
        provider = get_provider(self.providers, order.payment_info.provider)

        refund = provider.refund_payment(order.transaction_id, order.total_price)
        if not refund.success:
            raise PaymentInitiationError(sanitize_error_message(refund.error), refund.error_code)

        result = self.state_machine.refund(order)
        logger.info("payment_refunded", order_id=order.id, refund_id=refund.refund_id)
        return self._view(result.order, PaymentStatus.REFUNDED.value.upper(), message="Payment refunded")

    # --- internals ---

    def _record_outcome(self, order: Order, outcome: AttemptStatus, reference: str) -> Order:
        new_status = PaymentStatus.COMPLETED if outcome == AttemptStatus.COMPLETED else PaymentStatus.FAILED
        return self.state_machine.apply(order, new_status, reference=reference).order

    @staticmethod
    def _view(order: Order, status: str, message: str | None = None) -> PaymentView:
        return PaymentView(
            order_id=order.id,
            status=status,
            transaction_id=order.transaction_id,
            paid_at=order.paid_at,
            order_status=order.order_status,
            message=message,
        )
