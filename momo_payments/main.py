from concurrent.futures import ThreadPoolExecutor

import structlog
from fastapi import FastAPI

from momo_payments.config import load_airtel_settings, load_mtn_settings, load_payment_settings
from momo_payments.database import Base, SessionLocal, engine
from momo_payments.enums import Provider
from momo_payments.logging_config import configure_logging
from momo_payments.notifications import CompletionNotifier, log_confirmation
from momo_payments.orchestrator import PaymentOrchestrator
from momo_payments.order_store import OrderStore
from momo_payments.providers.registry import build_providers
from momo_payments.routes import router
from momo_payments.state_machine import PaymentStateMachine
from momo_payments.webhooks import WebhookReceiver

configure_logging()
logger = structlog.get_logger(__name__)


def warn_missing_settings() -> None:
    for provider, settings in (
        (Provider.MTN_MOBILE_MONEY.value, load_mtn_settings()),
        (Provider.AIRTEL_MONEY.value, load_airtel_settings()),
    ):
        missing = settings.missing_settings()
        if missing:
            logger.warning("provider_settings_missing", provider=provider, missing=missing)


def wire(app: FastAPI, session_factory=SessionLocal) -> None:
    """Build the long-lived services once and hang them on ``app.state``."""
    payment_settings = load_payment_settings()
    providers = build_providers(payment_settings)
    store = OrderStore(session_factory)
    notifier = CompletionNotifier([log_confirmation], executor=ThreadPoolExecutor(max_workers=4))
    state_machine = PaymentStateMachine(store, notifier)

    app.state.orchestrator = PaymentOrchestrator(
        store, providers, state_machine, payment_window_seconds=payment_settings.timeout_seconds
    )
    app.state.webhook_receiver = WebhookReceiver(providers, store, state_machine)


app = FastAPI(title="Mobile Money Payment Service")

app.include_router(router)

Base.metadata.create_all(bind=engine)
warn_missing_settings()
wire(app)
