"""
Sentry error tracking integration.
Captures unhandled exceptions with PII stripped from messages.
"""
import re

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
from sentry_sdk.integrations.redis import RedisIntegration
from app.config import settings
from app.obs.logging import get_logger

logger = get_logger(__name__)

_EMAIL = re.compile(r'\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b')
_BEARER = re.compile(r'(Bearer\s+)[A-Za-z0-9._~+/=-]+')


def setup_sentry():
    """
    Initialize Sentry SDK when a DSN is configured.

    Material-request e-mails are the only PII the portal handles; they are
    redacted in before_send and default PII collection stays off.
    """
    if not settings.SENTRY_DSN:
        logger.info("SENTRY_DSN not configured, skipping Sentry initialization")
        return

    try:
        sentry_sdk.init(
            dsn=settings.SENTRY_DSN,
            environment=settings.ENVIRONMENT,
            integrations=[
                FastApiIntegration(
                    transaction_style="endpoint",
                    failed_request_status_codes={500, 501, 502, 503, 504}
                ),
                SqlalchemyIntegration(),
                RedisIntegration(),
            ],
            traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
            before_send=before_send_event,
            release=f"pal-portal@{settings.ENVIRONMENT}",
            send_default_pii=False,
            attach_stacktrace=True,
            max_breadcrumbs=50
        )

        logger.info(f"Sentry initialized for environment: {settings.ENVIRONMENT}")

    except Exception as e:
        logger.error(f"Failed to initialize Sentry: {str(e)}")


def before_send_event(event, hint):
    """Redact PII from exception messages; drop non-errors in development."""
    if settings.ENVIRONMENT == "development" and event.get("level") != "error":
        return None

    if "exception" in event:
        for exception in event["exception"].get("values", []):
            if exception.get("value"):
                exception["value"] = redact_pii(exception["value"])

    return event


def redact_pii(text: str) -> str:
    text = _EMAIL.sub('[EMAIL_REDACTED]', text)
    text = _BEARER.sub(r'\1[REDACTED]', text)
    return text
