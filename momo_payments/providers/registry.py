from momo_payments.config import (
    PaymentSettings,
    load_airtel_settings,
    load_mtn_settings,
    load_payment_settings,
)
from momo_payments.errors import UnsupportedProviderError
from momo_payments.enums import Provider
from momo_payments.providers.airtel import AirtelMoneyProvider
from momo_payments.providers.base import MobileMoneyProvider
from momo_payments.providers.mtn import MTNMomoProvider


def build_providers(payment_settings: PaymentSettings | None = None) -> dict[str, MobileMoneyProvider]:
    """One client per provider, keyed by the order's ``payment_provider`` value.

    Build this once per process: each client owns its token cache.
    """
    payment_settings = payment_settings or load_payment_settings()
    return {
        Provider.MTN_MOBILE_MONEY.value: MTNMomoProvider(load_mtn_settings(), payment_settings),
        Provider.AIRTEL_MONEY.value: AirtelMoneyProvider(load_airtel_settings(), payment_settings),
    }


def get_provider(providers: dict[str, MobileMoneyProvider], name: str | None) -> MobileMoneyProvider:
    try:
        return providers[name]
    except KeyError:
        raise UnsupportedProviderError(f"Invalid payment provider: {name}") from None
