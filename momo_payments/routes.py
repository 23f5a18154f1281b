import asyncio
import threading

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from momo_payments.auth import CurrentUser, verify_token
from momo_payments.enums import Provider
from momo_payments.errors import PaymentServiceError
from momo_payments.orchestrator import DEFAULT_CANCEL_REASON, PaymentOrchestrator, PaymentView
from momo_payments.providers.base import AttemptStatus
from momo_payments.webhooks import WebhookReceiver

router = APIRouter()

DISCONNECT_CHECK_INTERVAL = 1.0


class PaymentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    order_id: str = Field(alias="orderId")


class CancelRequest(PaymentRequest):
    reason: str | None = None


def get_orchestrator(request: Request) -> PaymentOrchestrator:
    return request.app.state.orchestrator


def get_webhook_receiver(request: Request) -> WebhookReceiver:
    return request.app.state.webhook_receiver


def _http_error(exc: PaymentServiceError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.message)


def _payment_data(view: PaymentView) -> dict:
    data = {
        "orderId": view.order_id,
        "transactionId": view.transaction_id,
        "status": view.status,
        "orderStatus": view.order_status,
        "paidAt": view.paid_at.isoformat() if view.paid_at else None,
    }
    if view.expires_in is not None:
        data["expiresIn"] = view.expires_in
    return data


def _respond(view: PaymentView, default_message: str) -> dict:
    return {"success": True, "message": view.message or default_message, "data": _payment_data(view)}


@router.post("/payments/initiate")
def initiate_payment(
    body: PaymentRequest,
    user: CurrentUser = Depends(verify_token),
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
):
    try:
        view = orchestrator.initiate_payment(body.order_id, user.id)
    except PaymentServiceError as exc:
        raise _http_error(exc)
    return _respond(view, "Payment request sent")


async def _watch_disconnect(request: Request, cancel_event: threading.Event) -> None:
    while not cancel_event.is_set():
        if await request.is_disconnected():
            cancel_event.set()
            return
        await asyncio.sleep(DISCONNECT_CHECK_INTERVAL)


@router.post("/payments/process")
async def process_payment(
    body: PaymentRequest,
    request: Request,
    user: CurrentUser = Depends(verify_token),
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
):
    # Polling blocks for up to the payment window; keep it off the event loop
    cancel_event = threading.Event()
    watcher = asyncio.create_task(_watch_disconnect(request, cancel_event))
    try:
        view = await run_in_threadpool(orchestrator.process_with_polling, body.order_id, user.id, cancel_event)
    except PaymentServiceError as exc:
        raise _http_error(exc)
    finally:
        cancel_event.set()
        watcher.cancel()

    if view.status != AttemptStatus.COMPLETED.value:
        return JSONResponse(
            status_code=400,
            content={"success": False, "message": view.message or "Payment failed", "data": _payment_data(view)},
        )
    return _respond(view, "Payment completed successfully")


@router.get("/payments/status/{order_id}")
def payment_status(
    order_id: str,
    user: CurrentUser = Depends(verify_token),
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
):
    try:
        view = orchestrator.check_status(order_id, user.id, is_admin=user.is_admin)
    except PaymentServiceError as exc:
        raise _http_error(exc)
    return _respond(view, "Payment status retrieved")


@router.post("/payments/cancel")
def cancel_payment(
    body: CancelRequest,
    user: CurrentUser = Depends(verify_token),
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
):
    try:
        view = orchestrator.cancel_pending_payment(body.order_id, user.id, body.reason or DEFAULT_CANCEL_REASON)
    except PaymentServiceError as exc:
        raise _http_error(exc)
    return _respond(view, "Payment cancelled successfully")


@router.post("/payments/refund")
def refund_payment(
    body: PaymentRequest,
    user: CurrentUser = Depends(verify_token),
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
):
    try:
        view = orchestrator.refund_payment(body.order_id, user.id, is_admin=user.is_admin)
    except PaymentServiceError as exc:
        raise _http_error(exc)
    return _respond(view, "Payment refunded")


async def _handle_callback(provider: Provider, request: Request, signature: str | None,
                           receiver: WebhookReceiver) -> dict:
    payload = await request.body()
    try:
        result = await run_in_threadpool(
            receiver.handle_callback, provider.value, payload, signature, dict(request.headers)
        )
    except PaymentServiceError as exc:
        raise _http_error(exc)
    return result.as_dict()


@router.post("/payments/mtn/callback")
async def mtn_callback(
    request: Request,
    x_callback_signature: str = Header(None),
    receiver: WebhookReceiver = Depends(get_webhook_receiver),
):
    return await _handle_callback(Provider.MTN_MOBILE_MONEY, request, x_callback_signature, receiver)


@router.post("/payments/airtel/callback")
async def airtel_callback(
    request: Request,
    x_callback_signature: str = Header(None),
    receiver: WebhookReceiver = Depends(get_webhook_receiver),
):
    return await _handle_callback(Provider.AIRTEL_MONEY, request, x_callback_signature, receiver)


@router.get("/health")
def health():
    return {"status": "ok"}
