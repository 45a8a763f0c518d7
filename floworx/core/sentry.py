"""
Sentry initialization and error monitoring configuration.

Captures:
- Python exceptions
- FastAPI errors
- Celery task failures
- Business errors (provider outages, workflow hand-off failures)
"""

import logging
import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.celery import CeleryIntegration
from sentry_sdk.integrations.logging import LoggingIntegration

from floworx.core.config import settings

logger = logging.getLogger(__name__)

SENSITIVE_KEYS = [
    "access_token",
    "refresh_token",
    "encrypted_access_token",
    "encrypted_refresh_token",
    "token",
    "password",
    "password_hash",
    "secret",
    "api_key",
    "encryption_key",
    "authorization",
    "reset_link",
]


def init_sentry():
    """
    Initialize Sentry error monitoring.

    Only initializes if SENTRY_DSN is configured.
    Automatically captures FastAPI and Celery errors.
    """
    if not settings.SENTRY_DSN:
        logger.info("Sentry DSN not configured - error monitoring disabled")
        return

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENVIRONMENT,
        release="floworx@0.1.0",
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            CeleryIntegration(),
            LoggingIntegration(
                level=logging.INFO,
                event_level=logging.ERROR,
            ),
        ],
        traces_sample_rate=0.1 if settings.is_production else 1.0,
        sample_rate=1.0,
        send_default_pii=False,
        max_breadcrumbs=50,
        before_send=filter_sensitive_data,
    )

    logger.info(f"Sentry initialized - environment: {settings.ENVIRONMENT}")


def _redact(obj):
    if isinstance(obj, dict):
        for key in list(obj.keys()):
            if any(sensitive in str(key).lower() for sensitive in SENSITIVE_KEYS):
                obj[key] = "[REDACTED]"
            else:
                _redact(obj[key])
    elif isinstance(obj, list):
        for item in obj:
            _redact(item)


def filter_sensitive_data(event, hint):
    """
    Filter sensitive data before sending to Sentry.

    Removes tokens, passwords, keys and the Authorization header from
    extras, contexts and captured request data.

    Args:
        event: Sentry event dict
        hint: Additional context

    Returns:
        Modified event
    """
    for section in ("extra", "contexts", "request"):
        if event.get(section):
            _redact(event[section])

    return event


def capture_business_error(
    error: Exception,
    context: dict,
    level: str = "error"
):
    """
    Capture a business logic error with enriched context.

    Use this for expected errors that need tracking:
    - Mailbox provider outages
    - Password reset email delivery failures
    - Workflow engine hand-off failures

    Example:
        capture_business_error(
            error=e,
            context={"user_id": str(user.id), "operation": "provision"},
        )
    """
    safe_context = {k: v for k, v in context.items() if "token" not in k.lower()}

    sentry_sdk.capture_exception(
        error,
        level=level,
        extras=safe_context,
    )

    logger.error(
        f"Business error captured: {error}",
        extra=safe_context,
        exc_info=True
    )
