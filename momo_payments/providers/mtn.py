import uuid
from typing import Mapping

import structlog

from momo_payments.enums import Provider
from momo_payments.providers.base import (
    AttemptStatus,
    MobileMoneyProvider,
    PaymentAttempt,
    WebhookNotification,
    lowercase_headers,
)
from momo_payments.providers.retry import PermanentProviderError

logger = structlog.get_logger(__name__)

DUPLICATE_REFERENCE = "RESOURCE_ALREADY_EXIST"


def _reason_text(reason) -> str | None:
    if isinstance(reason, dict):
        return reason.get("message") or reason.get("code")
    return reason


class MTNMomoProvider(MobileMoneyProvider):
    """MTN Mobile Money collection API (request-to-pay).

    MTN does not mint its own id: the caller supplies a UUID in
    ``X-Reference-Id`` and uses it for every later query.
    """

    name = Provider.MTN_MOBILE_MONEY.value
    display_name = "MTN MoMo"

    STATUS_MAP = {
        "PENDING": AttemptStatus.PENDING,
        "SUCCESSFUL": AttemptStatus.COMPLETED,
        "FAILED": AttemptStatus.FAILED,
    }

    def _headers(self, token: str | None = None, **extra) -> dict:
        headers = {
            "Ocp-Apim-Subscription-Key": self.settings.subscription_key or "",
            "X-Target-Environment": self.settings.environment,
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"
        headers.update(extra)
        return headers

    def _authenticate(self) -> tuple[str, float]:
        response = self._send(
            "POST",
            "/collection/token/",
            auth=(self.settings.api_user, self.settings.api_key),
            headers={"Ocp-Apim-Subscription-Key": self.settings.subscription_key},
        )
        body = self._json(response)
        token = body.get("access_token")
        if not token:
            raise PermanentProviderError("Token response has no access_token", response.status_code)
        return token, float(body.get("expires_in") or 3600)

    def _new_reference(self, order_id: str) -> str:
        return str(uuid.uuid4())

    def _submit_payment(self, token, reference, amount, msisdn, order_id, customer_name, resubmission=False):
        body = {
            "amount": str(amount),
            "currency": self.settings.currency,
            "externalId": order_id,
            "payer": {"partyIdType": "MSISDN", "partyId": msisdn},
            "payerMessage": f"Payment for order {order_id}",
            "payeeNote": f"Order {order_id} - {customer_name or 'customer'}",
        }
        headers = self._headers(token, **{"X-Reference-Id": reference, "Content-Type": "application/json"})
        if self.settings.callback_url:
            headers["X-Callback-Url"] = self.settings.callback_url
        # 202 Accepted with an empty body
        try:
            self._send("POST", "/collection/v1_0/requesttopay", json=body, headers=headers)
        except PermanentProviderError as exc:
            # The unanswered earlier attempt already created this request
            if resubmission and exc.status_code == 409 and exc.code == DUPLICATE_REFERENCE:
                logger.info("payment_request_already_accepted", provider=self.name, order_id=order_id,
                            reference=reference)
                return reference
            raise
        return reference

    def _fetch_status(self, token, reference):
        response = self._send("GET", f"/collection/v1_0/requesttopay/{reference}", headers=self._headers(token))
        return self._json(response)

    def _parse_status(self, reference, body):
        native = str(body.get("status") or "").upper()
        status = self.STATUS_MAP.get(native, AttemptStatus.UNKNOWN)
        return PaymentAttempt(
            success=status == AttemptStatus.COMPLETED,
            status=status,
            transaction_id=reference,
            provider_transaction_id=body.get("financialTransactionId"),
            error=_reason_text(body.get("reason")) if status == AttemptStatus.FAILED else None,
        )

    def _submit_refund(self, token, reference, amount, refund_id):
        refund_reference = str(uuid.uuid4())
        body = {
            "amount": str(amount),
            "currency": self.settings.currency,
            "externalId": refund_id,
            "payerMessage": "Refund",
            "payeeNote": f"Refund of {reference}",
            "referenceIdToRefund": reference,
        }
        headers = self._headers(token, **{"X-Reference-Id": refund_reference, "Content-Type": "application/json"})
        self._send("POST", "/disbursement/v1_0/refund", json=body, headers=headers)
        return refund_reference

    def _check_account(self, token, msisdn):
        response = self._send(
            "GET",
            f"/collection/v1_0/accountholder/msisdn/{msisdn}/active",
            timeout=self.payment_settings.validation_timeout,
            headers=self._headers(token),
        )
        return self._json(response).get("result") is True

    def parse_webhook(self, payload, headers: Mapping[str, str] | None = None) -> WebhookNotification:
        reference = payload.get("referenceId") or lowercase_headers(headers).get("x-reference-id")
        if not isinstance(reference, str) or not reference:
            raise ValueError("MTN callback carries no reference id")
        native = str(payload.get("status") or "").upper()
        return WebhookNotification(
            reference=reference,
            status=self.STATUS_MAP.get(native, AttemptStatus.UNKNOWN),
            provider_transaction_id=payload.get("financialTransactionId"),
            raw=payload,
        )
