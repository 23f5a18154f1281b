import json

import pytest

from conftest import AIRTEL_SECRET, MTN_SECRET
from momo_payments.enums import Provider
from momo_payments.errors import SignatureVerificationError, UnsupportedProviderError
from momo_payments.providers.base import sign_payload
from momo_payments.webhooks import WebhookReceiver


@pytest.fixture
def receiver(mtn, airtel, store, state_machine):
    providers = {Provider.MTN_MOBILE_MONEY.value: mtn, Provider.AIRTEL_MONEY.value: airtel}
    return WebhookReceiver(providers, store, state_machine)


def signed(payload, secret):
    body = json.dumps(payload).encode()
    return body, sign_payload(body, secret)


def mtn_callback(reference, status):
    return {
        "referenceId": reference,
        "externalId": "order-1",
        "financialTransactionId": "FT-1",
        "status": status,
    }


def test_mtn_success_completes_order(receiver, make_order, store):
    order = make_order(transaction_id="ref-1")
    body, signature = signed(mtn_callback("ref-1", "SUCCESSFUL"), MTN_SECRET)

    result = receiver.handle_callback(Provider.MTN_MOBILE_MONEY.value, body, signature)

    assert result.as_dict() == {"received": True, "processed": True, "applied": True}
    saved = store.find_by_id(order.id)
    assert saved.payment_status == "completed"
    assert saved.order_status == "processing"


def test_mtn_reference_from_header(receiver, make_order, store):
    order = make_order(transaction_id="ref-9")
    payload = {"externalId": "order-1", "status": "FAILED", "reason": "APPROVAL_REJECTED"}
    body, signature = signed(payload, MTN_SECRET)

    result = receiver.handle_callback(Provider.MTN_MOBILE_MONEY.value, body, signature,
                                      headers={"X-Reference-Id": "ref-9"})

    assert result.applied
    assert store.find_by_id(order.id).payment_status == "failed"


def test_airtel_failure_fails_order(receiver, make_order, store):
    order = make_order(payment_provider=Provider.AIRTEL_MONEY.value, payment_phone="0731234567",
                       transaction_id="AT-1")
    payload = {"transaction": {"id": "AT-1", "status_code": "TF", "airtel_money_id": "MP-1",
                               "message": "Insufficient funds"}}
    body, signature = signed(payload, AIRTEL_SECRET)

    result = receiver.handle_callback(Provider.AIRTEL_MONEY.value, body, signature)

    assert result.applied
    assert store.find_by_id(order.id).payment_status == "failed"


def test_bad_signature_is_rejected(receiver, make_order, store):
    order = make_order(transaction_id="ref-1")
    body, _ = signed(mtn_callback("ref-1", "SUCCESSFUL"), MTN_SECRET)

    with pytest.raises(SignatureVerificationError):
        receiver.handle_callback(Provider.MTN_MOBILE_MONEY.value, body, "deadbeef")
    assert store.find_by_id(order.id).payment_status == "pending"


def test_signature_from_other_provider_is_rejected(receiver):
    body, signature = signed(mtn_callback("ref-1", "SUCCESSFUL"), AIRTEL_SECRET)

    with pytest.raises(SignatureVerificationError):
        receiver.handle_callback(Provider.MTN_MOBILE_MONEY.value, body, signature)


def test_duplicate_delivery_is_acknowledged(receiver, make_order, notifier):
    completions = []
    notifier.subscribe(completions.append)
    make_order(transaction_id="ref-1")
    body, signature = signed(mtn_callback("ref-1", "SUCCESSFUL"), MTN_SECRET)

    first = receiver.handle_callback(Provider.MTN_MOBILE_MONEY.value, body, signature)
    second = receiver.handle_callback(Provider.MTN_MOBILE_MONEY.value, body, signature)

    assert first.applied
    assert second.processed and not second.applied
    assert len(completions) == 1


def test_late_success_after_failure_is_ignored(receiver, make_order, store):
    order = make_order(transaction_id="ref-1", payment_status="failed")
    body, signature = signed(mtn_callback("ref-1", "SUCCESSFUL"), MTN_SECRET)

    result = receiver.handle_callback(Provider.MTN_MOBILE_MONEY.value, body, signature)

    assert not result.applied
    assert store.find_by_id(order.id).payment_status == "failed"


def test_unknown_reference_is_acknowledged(receiver):
    body, signature = signed(mtn_callback("nobody", "SUCCESSFUL"), MTN_SECRET)

    result = receiver.handle_callback(Provider.MTN_MOBILE_MONEY.value, body, signature)

    assert result.as_dict() == {"received": True, "processed": True, "applied": False}


def test_pending_callback_changes_nothing(receiver, make_order, store):
    order = make_order(transaction_id="ref-1")
    body, signature = signed(mtn_callback("ref-1", "PENDING"), MTN_SECRET)

    result = receiver.handle_callback(Provider.MTN_MOBILE_MONEY.value, body, signature)

    assert not result.applied
    assert store.find_by_id(order.id).payment_status == "pending"


@pytest.mark.parametrize("body", [b"not json", b"[1, 2]", b'{"status": "SUCCESSFUL"}'])
def test_unparseable_signed_body_is_acknowledged(receiver, body):
    result = receiver.handle_callback(Provider.MTN_MOBILE_MONEY.value, body, sign_payload(body, MTN_SECRET))

    assert result.as_dict() == {"received": True, "processed": False, "applied": False}


def test_unknown_provider(receiver):
    with pytest.raises(UnsupportedProviderError):
        receiver.handle_callback("mpesa", b"{}", "sig")


@pytest.mark.parametrize("provider_name, payload, secret", [
    (Provider.MTN_MOBILE_MONEY.value, {"referenceId": ["a"], "status": "SUCCESSFUL"}, MTN_SECRET),
    (Provider.MTN_MOBILE_MONEY.value, {"referenceId": 42, "status": "SUCCESSFUL"}, MTN_SECRET),
    (Provider.AIRTEL_MONEY.value, {"transaction": {"id": {"x": 1}, "status_code": "TS"}}, AIRTEL_SECRET),
    (Provider.AIRTEL_MONEY.value, {"transaction": "AT-1"}, AIRTEL_SECRET),
])
def test_reference_of_wrong_type_is_acknowledged(receiver, make_order, store, provider_name, payload, secret):
    order = make_order(transaction_id="a")
    body, signature = signed(payload, secret)

    result = receiver.handle_callback(provider_name, body, signature)

    assert result.as_dict() == {"received": True, "processed": False, "applied": False}
    assert store.find_by_id(order.id).payment_status == "pending"
