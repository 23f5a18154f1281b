import logging
import os

import structlog


def configure_logging(level: str | None = None) -> None:
    """Configure structlog for JSON output. Call once at startup."""
    level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level_name, logging.INFO)
        ),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # requests/urllib3 log full URLs at DEBUG, which include MSISDNs
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def mask_phone(phone: str | None) -> str:
    """Mask an MSISDN for log output, keeping the first 6 and last 2 characters."""
    if not phone or len(phone) < 8:
        return "***"
    return phone[:6] + "X" * (len(phone) - 8) + phone[-2:]
