import json
from dataclasses import dataclass
from typing import Mapping

import structlog

from momo_payments.enums import PaymentStatus
from momo_payments.errors import SignatureVerificationError
from momo_payments.order_store import OrderStore
from momo_payments.providers.base import AttemptStatus, MobileMoneyProvider
from momo_payments.providers.registry import get_provider
from momo_payments.state_machine import PaymentStateMachine

logger = structlog.get_logger(__name__)

SIGNATURE_HEADER = "X-Callback-Signature"

_OUTCOMES = {
    AttemptStatus.COMPLETED: PaymentStatus.COMPLETED,
    AttemptStatus.FAILED: PaymentStatus.FAILED,
}


@dataclass
class WebhookResult:
    received: bool = True
    processed: bool = False
    applied: bool = False

    def as_dict(self) -> dict:
        return {"received": self.received, "processed": self.processed, "applied": self.applied}


class WebhookReceiver:
    """Applies provider callbacks to orders.

    Only a bad signature is refused. Anything else that arrives signed is
    acknowledged so the provider stops redelivering it, whether or not it
    changed an order.
    """

    def __init__(
        self,
        providers: Mapping[str, MobileMoneyProvider],
        store: OrderStore,
        state_machine: PaymentStateMachine,
    ):
        self.providers = providers
        self.store = store
        self.state_machine = state_machine

    def handle_callback(
        self,
        provider_name: str,
        raw_body: bytes,
        signature: str | None,
        headers: Mapping[str, str] | None = None,
    ) -> WebhookResult:
        provider = get_provider(self.providers, provider_name)

        if not provider.verify_webhook_signature(raw_body, signature):
            logger.warning("webhook_signature_invalid", provider=provider_name)
            raise SignatureVerificationError("Invalid signature")

        try:
            payload = json.loads(raw_body or b"{}")
            if not isinstance(payload, dict):
                raise ValueError("callback body is not an object")
            notification = provider.parse_webhook(payload, headers)
        except (ValueError, AttributeError) as exc:
            logger.warning("webhook_unparseable", provider=provider_name, error=str(exc))
            return WebhookResult()

        log = logger.bind(provider=provider_name, reference=notification.reference,
                          outcome=notification.status.value)

        new_status = _OUTCOMES.get(notification.status)
        if new_status is None:
            log.info("webhook_non_terminal")
            return WebhookResult(processed=True)

        order = self.store.find_by_transaction_reference(notification.reference)
        if order is None:
            log.warning("webhook_order_not_found")
            return WebhookResult(processed=True)

        result = self.state_machine.apply(order, new_status, reference=notification.reference)
        log.info("webhook_processed", order_id=order.id, applied=result.applied, reason=result.reason)
        return WebhookResult(processed=True, applied=result.applied)
