from momo_payments.config import load_airtel_settings, load_mtn_settings, load_payment_settings


def test_payment_settings_defaults(monkeypatch):
    for key in ("PAYMENT_TIMEOUT_SECONDS", "PAYMENT_POLL_INTERVAL_SECONDS", "PAYMENT_RETRY_ATTEMPTS"):
        monkeypatch.delenv(key, raising=False)

    settings = load_payment_settings()

    assert settings.timeout_seconds == 180
    assert settings.poll_interval_seconds == 5.0
    assert settings.max_poll_attempts == 36
    assert settings.retry_attempts == 3


def test_payment_settings_from_env(monkeypatch):
    monkeypatch.setenv("PAYMENT_TIMEOUT_SECONDS", "60")
    monkeypatch.setenv("PAYMENT_POLL_INTERVAL_SECONDS", "2")

    assert load_payment_settings().max_poll_attempts == 30


def test_mtn_missing_credentials(monkeypatch):
    monkeypatch.setenv("MTN_SUBSCRIPTION_KEY", "sub")
    monkeypatch.delenv("MTN_API_USER", raising=False)
    monkeypatch.delenv("MTN_API_KEY", raising=False)

    assert load_mtn_settings().missing_settings() == ["MTN_API_USER", "MTN_API_KEY"]


def test_airtel_settings(monkeypatch):
    monkeypatch.setenv("AIRTEL_CLIENT_ID", "id")
    monkeypatch.setenv("AIRTEL_CLIENT_SECRET", "secret")
    monkeypatch.delenv("AIRTEL_COUNTRY", raising=False)

    settings = load_airtel_settings()

    assert settings.missing_settings() == []
    assert settings.country == "RW"
    assert settings.currency == "RWF"


def test_startup_warns_about_missing_settings(monkeypatch, mocker):
    import momo_payments.main as main

    for key in ("MTN_SUBSCRIPTION_KEY", "MTN_API_USER", "MTN_API_KEY"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("AIRTEL_CLIENT_ID", "id")
    monkeypatch.setenv("AIRTEL_CLIENT_SECRET", "secret")
    logger = mocker.patch.object(main, "logger")

    main.warn_missing_settings()

    logger.warning.assert_called_once_with(
        "provider_settings_missing",
        provider="mtn_mobile_money",
        missing=["MTN_SUBSCRIPTION_KEY", "MTN_API_USER", "MTN_API_KEY"],
    )
