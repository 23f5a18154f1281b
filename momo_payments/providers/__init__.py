from .base import (
    AttemptStatus,
    MobileMoneyProvider,
    PaymentAttempt,
    RefundResult,
    WebhookNotification,
    sign_payload,
)
from .airtel import AirtelMoneyProvider
from .mtn import MTNMomoProvider
from .registry import build_providers, get_provider

__all__ = [
    "AttemptStatus",
    "MobileMoneyProvider",
    "PaymentAttempt",
    "RefundResult",
    "WebhookNotification",
    "sign_payload",
    "AirtelMoneyProvider",
    "MTNMomoProvider",
    "build_providers",
    "get_provider",
]
