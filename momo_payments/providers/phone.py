import re

_SEPARATORS = re.compile(r"[\s\-()]")
_RWANDA_MSISDN = re.compile(r"^(\+?250|0)?7[238]\d{7}$")


def _clean(phone: str) -> str:
    return _SEPARATORS.sub("", phone)


def validate_phone_number(phone: str | None) -> bool:
    """Rwandan MTN/Airtel MSISDN: 072/073/078 followed by 7 digits, any prefix form."""
    if not phone:
        return False
    return bool(_RWANDA_MSISDN.match(_clean(phone)))


def format_phone_number(phone: str) -> str:
    """Canonical ``250XXXXXXXXX`` form expected by both providers."""
    cleaned = _clean(phone)
    if cleaned.startswith("+250"):
        cleaned = cleaned[4:]
    elif cleaned.startswith("250"):
        cleaned = cleaned[3:]
    elif cleaned.startswith("0"):
        cleaned = cleaned[1:]
    return f"250{cleaned}"
