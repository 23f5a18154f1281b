"""
Order payment state machine.

The only code allowed to write ``Order.payment_status``. Automatic paths
(polling, status checks, webhooks) may only move a payment out of
``pending``; once a payment is ``completed``, ``failed`` or ``refunded``
they become no-ops, so a poller and a webhook observing the same event
converge on one write. Explicit user/admin actions (re-initiation,
cancellation, refund) have their own, equally narrow, transitions.

Every write is a compare-and-swap on the prior status. A writer that loses
the race re-reads the order and re-evaluates, which lands on the no-op.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

import structlog

from momo_payments.enums import OrderStatus, PaymentStatus
from momo_payments.errors import InvalidStateError, OrderNotFoundError
from momo_payments.models import Order
from momo_payments.notifications import CompletionNotifier
from momo_payments.order_store import OrderStore

logger = structlog.get_logger(__name__)

TERMINAL_STATUSES = {PaymentStatus.COMPLETED, PaymentStatus.FAILED, PaymentStatus.REFUNDED}

AUTOMATIC_TRANSITIONS = {
    PaymentStatus.PENDING: {PaymentStatus.COMPLETED, PaymentStatus.FAILED},
}

EXPLICIT_TRANSITIONS = {
    PaymentStatus.PENDING: {PaymentStatus.PENDING, PaymentStatus.FAILED},
    PaymentStatus.FAILED: {PaymentStatus.PENDING},
    PaymentStatus.COMPLETED: {PaymentStatus.REFUNDED},
}


@dataclass
class TransitionResult:
    applied: bool
    order: Order
    previous_status: PaymentStatus
    reason: str | None = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PaymentStateMachine:
    MAX_CONFLICTS = 3

    def __init__(
        self,
        store: OrderStore,
        notifier: CompletionNotifier | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.notifier = notifier or CompletionNotifier()
        self._clock = clock

    def apply(
        self,
        order: Order,
        new_status: PaymentStatus,
        *,
        reference: str | None = None,
        explicit: bool = False,
        new_reference: str | None = None,
        cancellation_reason: str | None = None,
    ) -> TransitionResult:
        """Move ``order``'s payment to ``new_status`` if the transition is allowed.

        ``reference`` guards automatic outcomes: the write only lands if the
        order still carries that provider reference. Disallowed automatic
        transitions are no-ops; disallowed explicit ones raise
        InvalidStateError.
        """
        new_status = PaymentStatus(new_status)

        for _ in range(self.MAX_CONFLICTS):
            current = PaymentStatus(order.payment_status)

            if reference is not None and order.transaction_id != reference:
                return self._skip(order, current, new_status, "stale_reference")
            if current == new_status and current in TERMINAL_STATUSES:
                return self._skip(order, current, new_status, "already_applied")

            allowed = EXPLICIT_TRANSITIONS if explicit else AUTOMATIC_TRANSITIONS
            if new_status not in allowed.get(current, set()):
                if explicit:
                    raise InvalidStateError(f"Cannot move payment from {current.value} to {new_status.value}")
                return self._skip(order, current, new_status, "terminal_state")

            changes = self._changes(order, new_status, new_reference, cancellation_reason)
            if self.store.save(order.id, current.value, changes, expected_reference=reference):
                updated = self.store.find_by_id(order.id)
                logger.info(
                    "payment_transition_applied",
                    order_id=order.id,
                    from_status=current.value,
                    to_status=new_status.value,
                    order_status=updated.order_status,
                )
                if new_status == PaymentStatus.COMPLETED:
                    self.notifier.payment_completed(updated)
                return TransitionResult(applied=True, order=updated, previous_status=current)

            # Someone else wrote first; re-evaluate against what they wrote
            order = self.store.find_by_id(order.id)
            if order is None:
                raise OrderNotFoundError("Order not found")

        return self._skip(order, PaymentStatus(order.payment_status), new_status, "write_conflict")

    def _changes(self, order: Order, new_status: PaymentStatus,
                 new_reference: str | None, cancellation_reason: str | None) -> dict:
        now = self._clock()
        changes = {"payment_status": new_status.value}

        if new_status == PaymentStatus.PENDING:
            if order.order_status == OrderStatus.CANCELLED.value:
                raise InvalidStateError("Order has been cancelled")
            if new_reference:
                changes["transaction_id"] = new_reference
        elif new_status == PaymentStatus.COMPLETED:
            changes["paid_at"] = now
            changes["order_status"] = OrderStatus.PROCESSING.value
        elif new_status == PaymentStatus.FAILED and cancellation_reason:
            changes["order_status"] = OrderStatus.CANCELLED.value
            changes["cancellation_reason"] = cancellation_reason
            changes["cancelled_at"] = now
        return changes

    @staticmethod
    def _skip(order: Order, current: PaymentStatus, new_status: PaymentStatus, reason: str) -> TransitionResult:
        logger.info(
            "payment_transition_skipped",
            order_id=order.id,
            current_status=current.value,
            requested_status=new_status.value,
            reason=reason,
        )
        return TransitionResult(applied=False, order=order, previous_status=current, reason=reason)

    # --- explicit actions ---

    def start_payment(self, order: Order, reference: str) -> TransitionResult:
        return self.apply(order, PaymentStatus.PENDING, explicit=True, new_reference=reference)

    def cancel(self, order: Order, reason: str) -> TransitionResult:
        return self.apply(order, PaymentStatus.FAILED, explicit=True, cancellation_reason=reason)

    def refund(self, order: Order) -> TransitionResult:
        return self.apply(order, PaymentStatus.REFUNDED, explicit=True)
