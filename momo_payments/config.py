import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

# Force-load .env (Windows-safe, reload-safe)
BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(dotenv_path=BASE_DIR / ".env")

CURRENCY = "RWF"


def _int(key: str, default: int) -> int:
    value = os.getenv(key)
    return int(value) if value else default


def _float(key: str, default: float) -> float:
    value = os.getenv(key)
    return float(value) if value else default


@dataclass(frozen=True)
class MTNSettings:
    base_url: str
    subscription_key: str | None
    api_user: str | None
    api_key: str | None
    environment: str = "sandbox"
    callback_url: str | None = None
    webhook_secret: str | None = None
    currency: str = CURRENCY

    def missing_settings(self) -> list[str]:
        required = {
            "MTN_SUBSCRIPTION_KEY": self.subscription_key,
            "MTN_API_USER": self.api_user,
            "MTN_API_KEY": self.api_key,
        }
        return [name for name, value in required.items() if not value]


@dataclass(frozen=True)
class AirtelSettings:
    base_url: str
    client_id: str | None
    client_secret: str | None
    environment: str = "sandbox"
    country: str = "RW"
    webhook_secret: str | None = None
    currency: str = CURRENCY

    def missing_settings(self) -> list[str]:
        required = {
            "AIRTEL_CLIENT_ID": self.client_id,
            "AIRTEL_CLIENT_SECRET": self.client_secret,
        }
        return [name for name, value in required.items() if not value]


@dataclass(frozen=True)
class PaymentSettings:
    timeout_seconds: int = 180
    poll_interval_seconds: float = 5.0
    retry_attempts: int = 3
    retry_base_delay: float = 1.0
    request_timeout: float = 30.0
    validation_timeout: float = 10.0
    token_expiry_buffer: int = 300

    @property
    def max_poll_attempts(self) -> int:
        return int(self.timeout_seconds // self.poll_interval_seconds)


def load_mtn_settings() -> MTNSettings:
    return MTNSettings(
        base_url=os.getenv("MTN_MOMO_API_URL", "https://sandbox.momodeveloper.mtn.com"),
        subscription_key=os.getenv("MTN_SUBSCRIPTION_KEY"),
        api_user=os.getenv("MTN_API_USER"),
        api_key=os.getenv("MTN_API_KEY"),
        environment=os.getenv("MTN_ENVIRONMENT", "sandbox"),
        callback_url=os.getenv("MTN_CALLBACK_URL"),
        webhook_secret=os.getenv("MTN_WEBHOOK_SECRET"),
    )


def load_airtel_settings() -> AirtelSettings:
    return AirtelSettings(
        base_url=os.getenv("AIRTEL_API_URL", "https://openapi.airtel.africa"),
        client_id=os.getenv("AIRTEL_CLIENT_ID"),
        client_secret=os.getenv("AIRTEL_CLIENT_SECRET"),
        environment=os.getenv("AIRTEL_ENVIRONMENT", "sandbox"),
        country=os.getenv("AIRTEL_COUNTRY", "RW"),
        webhook_secret=os.getenv("AIRTEL_WEBHOOK_SECRET"),
    )


def load_payment_settings() -> PaymentSettings:
    return PaymentSettings(
        timeout_seconds=_int("PAYMENT_TIMEOUT_SECONDS", 180),
        poll_interval_seconds=_float("PAYMENT_POLL_INTERVAL_SECONDS", 5.0),
        retry_attempts=_int("PAYMENT_RETRY_ATTEMPTS", 3),
        retry_base_delay=_float("PAYMENT_RETRY_BASE_DELAY", 1.0),
        request_timeout=_float("PAYMENT_REQUEST_TIMEOUT", 30.0),
        validation_timeout=_float("PAYMENT_VALIDATION_TIMEOUT", 10.0),
        token_expiry_buffer=_int("PAYMENT_TOKEN_EXPIRY_BUFFER", 300),
    )
