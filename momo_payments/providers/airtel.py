from typing import Mapping

from momo_payments.enums import Provider
from momo_payments.providers.base import (
    AttemptStatus,
    MobileMoneyProvider,
    PaymentAttempt,
    WebhookNotification,
)
from momo_payments.providers.retry import PermanentProviderError


def _section(body: dict, key: str, status_code: int | None = None) -> dict:
    """A nested object of an Airtel body; absent reads as empty."""
    value = body.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise PermanentProviderError(f"Airtel Money returned a malformed '{key}' field", status_code)
    return value


def _map_status(code) -> AttemptStatus:
    # TS = transaction success, TF = transaction failed; TIP/TA/TP are in flight
    if code == "TS":
        return AttemptStatus.COMPLETED
    if code == "TF":
        return AttemptStatus.FAILED
    return AttemptStatus.PENDING


class AirtelMoneyProvider(MobileMoneyProvider):
    """Airtel Money merchant collection API.

    Airtel answers a payment request with its own transaction id, which
    replaces the reference we sent.
    """

    name = Provider.AIRTEL_MONEY.value
    display_name = "Airtel Money"
    REFERENCE_PREFIX = "MOMO"

    def _headers(self, token: str) -> dict:
        return {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "X-Country": self.settings.country,
            "X-Currency": self.settings.currency,
        }

    @staticmethod
    def _ensure_success(body: dict, status_code: int) -> None:
        status = _section(body, "status", status_code)
        if not status.get("success"):
            raise PermanentProviderError(
                status.get("message") or "Airtel Money rejected the request",
                status_code,
                status.get("response_code") or status.get("code"),
            )

    def _authenticate(self) -> tuple[str, float]:
        response = self._send(
            "POST",
            "/auth/oauth2/token",
            json={
                "client_id": self.settings.client_id,
                "client_secret": self.settings.client_secret,
                "grant_type": "client_credentials",
            },
            headers={"Content-Type": "application/json"},
        )
        body = self._json(response)
        token = body.get("access_token")
        if not token:
            raise PermanentProviderError("Token response has no access_token", response.status_code)
        return token, float(body.get("expires_in") or 3600)

    def _new_reference(self, order_id: str) -> str:
        return f"{self.REFERENCE_PREFIX}-{int(self._clock() * 1000)}-{order_id}"

    def _submit_payment(self, token, reference, amount, msisdn, order_id, customer_name, resubmission=False):
        body = {
            "reference": reference,
            "subscriber": {
                "country": self.settings.country,
                "currency": self.settings.currency,
                "msisdn": msisdn,
            },
            "transaction": {
                "amount": amount if isinstance(amount, (int, float)) else str(amount),
                "country": self.settings.country,
                "currency": self.settings.currency,
                "id": reference,
            },
        }
        response = self._send("POST", "/merchant/v1/payments/", json=body, headers=self._headers(token))
        payload = self._json(response)
        self._ensure_success(payload, response.status_code)
        transaction = _section(_section(payload, "data", response.status_code), "transaction", response.status_code)
        transaction_id = transaction.get("id")
        return transaction_id if isinstance(transaction_id, str) and transaction_id else reference

    def _fetch_status(self, token, reference):
        response = self._send("GET", f"/standard/v1/payments/{reference}", headers=self._headers(token))
        return self._json(response)

    def _parse_status(self, reference, body):
        transaction = _section(_section(body, "data"), "transaction")
        status = _map_status(transaction.get("status"))
        return PaymentAttempt(
            success=status == AttemptStatus.COMPLETED,
            status=status,
            transaction_id=transaction.get("id") or reference,
            provider_transaction_id=transaction.get("airtel_money_id"),
            error=transaction.get("message") if status == AttemptStatus.FAILED else None,
        )

    def _submit_refund(self, token, reference, amount, refund_id):
        body = {
            "transaction": {
                "amount": amount if isinstance(amount, (int, float)) else str(amount),
                "country": self.settings.country,
                "currency": self.settings.currency,
                "id": refund_id,
            },
            "reference": {"transaction": {"id": reference}},
        }
        response = self._send("POST", "/standard/v1/payments/refund", json=body, headers=self._headers(token))
        self._ensure_success(self._json(response), response.status_code)
        return refund_id

    def _check_account(self, token, msisdn):
        response = self._send(
            "GET",
            f"/standard/v1/users/{msisdn}",
            timeout=self.payment_settings.validation_timeout,
            headers=self._headers(token),
        )
        body = self._json(response)
        if not _section(body, "status", response.status_code).get("success"):
            return False
        data = _section(body, "data", response.status_code)
        return str(data.get("is_barred", False)).lower() not in ("true", "1")

    def parse_webhook(self, payload, headers: Mapping[str, str] | None = None) -> WebhookNotification:
        transaction = payload.get("transaction")
        if not isinstance(transaction, dict):
            raise ValueError("Airtel callback carries no transaction object")
        reference = transaction.get("id")
        if not isinstance(reference, str) or not reference:
            raise ValueError("Airtel callback carries no transaction id")
        return WebhookNotification(
            reference=reference,
            status=_map_status(transaction.get("status_code")),
            provider_transaction_id=transaction.get("airtel_money_id"),
            raw=payload,
        )
