"""
Mailbox routes - provider OAuth connection, folder discovery and provisioning.

Endpoints:
- GET /api/oauth/{provider} - Authorization URL for connecting a mailbox
- GET /api/oauth/{provider}/callback - OAuth redirect target
- GET /api/mailbox/discover - Folders/labels, taxonomy and label suggestions
- POST /api/mailbox/provision - Create missing folders/labels
- GET /api/mailbox/statistics - Folder counts
- GET /api/mailbox/find?path=|name= - Look up one folder

Provider results map to responses:
- ok: 200 {"success": true, "status": "ok", "data": ...}
- not_implemented: 501 {"success": false, "error": {"status": "not_implemented", ...}}
- error: 502/503 {"success": false, "error": {"retryable": ..., ...}}
"""

import asyncio
import logging
import uuid
from datetime import datetime, timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, ConfigDict
from sqlalchemy.ext.asyncio import AsyncSession

from floworx.core.config import settings
from floworx.core.database import get_db
from floworx.core.errors import (
    AuthenticationError,
    ProviderError,
    ProviderNotImplementedError,
    ValidationError,
)
from floworx.core.security import encrypt_token
from floworx.models import Mailbox, User
from floworx.modules.auth.dependencies import get_current_user
from floworx.modules.mailbox.base import ProviderResult, ProvisionItem, split_path, unwrap
from floworx.modules.mailbox.oauth import gmail_oauth
from floworx.modules.mailbox.service import MailboxService
from floworx.modules.onboarding.store import OnboardingStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["mailbox"])

SUPPORTED_PROVIDERS = ("gmail", "outlook")


class ProvisionRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    items: Optional[List[ProvisionItem]] = None


def provider_response(result: ProviderResult) -> dict:
    return {"success": True, "status": result.status, "data": unwrap(result)}


def _check_provider(provider: str) -> None:
    if provider not in SUPPORTED_PROVIDERS:
        raise ValidationError(f"Unsupported email provider: {provider}", code="INVALID_PROVIDER")
    if provider == "outlook":
        raise ProviderNotImplementedError("outlook", "connect")


@router.get("/api/oauth/{provider}")
async def oauth_start(provider: str, user: User = Depends(get_current_user)):
    """Start the OAuth flow; the frontend navigates to authorizationUrl."""
    _check_provider(provider)
    auth_url, _ = await gmail_oauth.get_authorization_url(str(user.id))
    return {"success": True, "authorizationUrl": auth_url}


@router.get("/api/oauth/{provider}/callback")
async def oauth_callback(
    provider: str,
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
):
    """
    Google redirects here after consent.

    Stores the encrypted tokens, records the provider in onboarding state and
    sends the browser back to the wizard.
    """
    _check_provider(provider)
    if not code:
        raise ValidationError("Missing authorization code", code="MISSING_CODE")

    user_id = await gmail_oauth.verify_state(state)
    if not user_id:
        raise AuthenticationError("Invalid or expired OAuth state", code="INVALID_STATE")

    user = await db.get(User, uuid.UUID(user_id))
    if user is None or not user.is_active:
        raise AuthenticationError("Invalid or expired OAuth state", code="INVALID_STATE")

    try:
        tokens = await asyncio.wait_for(
            asyncio.to_thread(gmail_oauth.exchange_code_for_tokens, code),
            timeout=settings.PROVIDER_TIMEOUT_SECONDS,
        )
    except asyncio.TimeoutError as e:
        raise ProviderError(
            "Google did not respond in time. Please try again.",
            code="PROVIDER_TIMEOUT",
            retryable=True,
            provider=provider,
        ) from e

    service = MailboxService(db)
    mailbox = await service.connected_mailbox(user, provider)
    if mailbox is None:
        mailbox = Mailbox(user_id=user.id, provider=provider)
        db.add(mailbox)

    mailbox.email_address = tokens["email"]
    mailbox.encrypted_access_token = encrypt_token(tokens["access_token"])
    if tokens.get("refresh_token"):
        mailbox.encrypted_refresh_token = encrypt_token(tokens["refresh_token"])
    mailbox.token_expires_at = datetime.utcnow() + timedelta(seconds=tokens["expires_in"])
    mailbox.is_active = True

    await OnboardingStore(db).record_provider(user, provider)
    await db.commit()

    logger.info(
        f"Mailbox connected for user {user.id} ({provider})",
        extra={"user_id": str(user.id), "provider": provider},
    )
    return RedirectResponse(url=f"{settings.FRONTEND_URL}/onboarding?connected={provider}", status_code=302)


@router.get("/api/mailbox/discover")
async def discover(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    """Folders, taxonomy, and reuse/create suggestions for each business category."""
    return provider_response(await MailboxService(db).discover(user))


@router.post("/api/mailbox/provision")
async def provision(
    payload: Optional[ProvisionRequest] = None,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Without items, provisions one label per saved label mapping."""
    result = await MailboxService(db).provision(user, payload.items if payload else None)
    return provider_response(result)


@router.get("/api/mailbox/statistics")
async def statistics(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    adapter = await MailboxService(db).adapter_for(user)
    return provider_response(await adapter.get_statistics(user))


@router.get("/api/mailbox/find")
async def find_folder(
    path: Optional[str] = Query(None, description="Folder path, e.g. Sales/Inbox"),
    name: Optional[str] = Query(None, description="Full folder name"),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    if not path and not name:
        raise ValidationError("Provide path or name", code="MISSING_QUERY")

    adapter = await MailboxService(db).adapter_for(user)
    if path:
        segments = split_path(path)
        if not segments:
            raise ValidationError("Provide path or name", code="MISSING_QUERY")
        result = await adapter.find_by_path(user, segments)
    else:
        result = await adapter.find_by_name(user, name)
    return provider_response(result)
