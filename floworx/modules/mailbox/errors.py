"""
Gmail API failures mapped to ProviderError.

Shared by the label client and the OAuth profile lookup so both report the
same codes:
- 401/403: PROVIDER_AUTH (user must reconnect, not retryable)
- 409: ALREADY_EXISTS
- 429: PROVIDER_RATE_LIMITED (retryable)
- 5xx and network errors: PROVIDER_UNAVAILABLE (retryable)
- anything else: PROVIDER_REJECTED
"""

import logging
import socket
from typing import Any, Dict, Optional

import httplib2
from googleapiclient.errors import HttpError

from floworx.core.errors import ProviderError

logger = logging.getLogger(__name__)

PROVIDER = "gmail"

NETWORK_ERRORS = (socket.timeout, ConnectionError, httplib2.HttpLib2Error)


def gmail_http_error(error: HttpError, operation: str, extra: Optional[Dict[str, Any]] = None) -> ProviderError:
    status_code = error.resp.status
    extra = {**(extra or {}), "operation": operation, "status": status_code}

    if status_code in (401, 403):
        logger.error(f"Gmail API {status_code} error during {operation}", extra=extra)
        return ProviderError(
            "Gmail access was revoked or has expired. Please reconnect your account.",
            code="PROVIDER_AUTH",
            provider=PROVIDER,
        )
    if status_code == 409:
        return ProviderError("Label already exists", code="ALREADY_EXISTS", provider=PROVIDER)
    if status_code == 429:
        logger.warning(f"Gmail API quota exceeded during {operation}", extra=extra)
        return ProviderError(
            "Gmail rate limit reached. Please try again shortly.",
            code="PROVIDER_RATE_LIMITED",
            retryable=True,
            provider=PROVIDER,
        )
    if status_code >= 500:
        logger.warning(f"Gmail API {status_code} error during {operation}", extra=extra)
        return ProviderError(
            f"Gmail is temporarily unavailable ({status_code})",
            code="PROVIDER_UNAVAILABLE",
            retryable=True,
            provider=PROVIDER,
        )

    logger.error(f"Gmail API {status_code} error during {operation}", extra=extra)
    return ProviderError(
        f"Gmail rejected the request ({status_code})",
        code="PROVIDER_REJECTED",
        provider=PROVIDER,
    )


def gmail_network_error(error: BaseException, operation: str, extra: Optional[Dict[str, Any]] = None) -> ProviderError:
    logger.warning(
        f"Gmail network error during {operation}: {type(error).__name__}",
        extra={**(extra or {}), "operation": operation},
    )
    return ProviderError(
        "Could not reach Gmail. Please try again.",
        code="PROVIDER_UNAVAILABLE",
        retryable=True,
        provider=PROVIDER,
    )
