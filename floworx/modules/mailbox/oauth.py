"""
Gmail OAuth flow using Authlib and Google API.

Handles:
- OAuth authorization URL generation (state stored in Redis for CSRF protection)
- Token exchange (authorization code -> access/refresh tokens)
- Token refresh when the access token is about to expire

CRITICAL SECURITY:
- NEVER log tokens (access_token, refresh_token)
- ALWAYS encrypt tokens before database storage
- State tokens are single use
"""

import logging
from datetime import datetime, timedelta
from typing import Optional, Tuple

import redis.asyncio as redis
import requests
from authlib.integrations.base_client.errors import OAuthError
from authlib.integrations.requests_client import OAuth2Session
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from floworx.core.config import settings
from floworx.core.errors import ProviderError
from floworx.core.security import decrypt_token, encrypt_token, generate_state_token
from floworx.modules.mailbox.errors import NETWORK_ERRORS, gmail_http_error, gmail_network_error

logger = logging.getLogger(__name__)


GMAIL_SCOPES = [
    "https://www.googleapis.com/auth/gmail.modify",  # Apply labels to messages
    "https://www.googleapis.com/auth/gmail.labels",  # Discover and create labels
    "https://www.googleapis.com/auth/userinfo.email",  # Mailbox address
]

GOOGLE_AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"

STATE_TTL_SECONDS = 600

TRANSIENT_FAILURES = (requests.Timeout, requests.ConnectionError)


class GmailOAuthManager:
    """
    Manages Gmail OAuth flow and token operations.

    Usage:
        auth_url, state = await gmail_oauth.get_authorization_url(user.id)
        # User visits auth_url and Google redirects back with code + state
        user_id = await gmail_oauth.verify_state(state)
        tokens = gmail_oauth.exchange_code_for_tokens(code)
    """

    def __init__(self):
        self.client_id = settings.GOOGLE_CLIENT_ID
        self.client_secret = settings.GOOGLE_CLIENT_SECRET
        self.redirect_uri = settings.GOOGLE_REDIRECT_URI
        self._redis = None

    async def _get_redis(self) -> redis.Redis:
        if not self._redis:
            self._redis = redis.from_url(settings.REDIS_URL)
        return self._redis

    async def get_authorization_url(self, user_id: str) -> Tuple[str, str]:
        """
        Generate OAuth authorization URL bound to a user.

        Returns:
            Tuple of (authorization_url, state_token)
        """
        state = generate_state_token()

        redis_client = await self._get_redis()
        await redis_client.setex(f"oauth_state:{state}", STATE_TTL_SECONDS, str(user_id))

        session = OAuth2Session(
            client_id=self.client_id,
            client_secret=self.client_secret,
            redirect_uri=self.redirect_uri,
            scope=GMAIL_SCOPES,
        )
        auth_url, _ = session.create_authorization_url(
            GOOGLE_AUTHORIZE_URL,
            state=state,
            access_type="offline",  # Request refresh token
            prompt="consent",  # Refresh token is only issued with the consent screen
        )
        return auth_url, state

    async def verify_state(self, state: Optional[str]) -> Optional[str]:
        """
        Consume a state token.

        Returns:
            User ID the state was issued for, or None if unknown/expired/used
        """
        if not state:
            return None

        redis_client = await self._get_redis()
        key = f"oauth_state:{state}"
        user_id = await redis_client.get(key)
        if user_id is None:
            return None

        await redis_client.delete(key)
        return user_id.decode() if isinstance(user_id, bytes) else user_id

    def exchange_code_for_tokens(self, code: str) -> dict:
        """
        Exchange authorization code for access/refresh tokens.

        Returns:
            Dict with access_token, refresh_token, expires_in and email.
            Tokens are plaintext here: encrypt before storing.

        Raises:
            ProviderError: Google rejected the code (non-retryable), was
                unreachable, or the Gmail profile lookup failed
        """
        session = OAuth2Session(
            client_id=self.client_id,
            client_secret=self.client_secret,
            redirect_uri=self.redirect_uri,
        )

        try:
            token_response = session.fetch_token(GOOGLE_TOKEN_URL, code=code)
        except OAuthError as e:
            raise ProviderError(
                f"Google rejected the authorization code ({e.error})",
                code="OAUTH_EXCHANGE_FAILED",
                provider="gmail",
            ) from e
        except TRANSIENT_FAILURES as e:
            raise ProviderError(
                "Could not reach Google. Please try again.",
                code="PROVIDER_UNAVAILABLE",
                retryable=True,
                provider="gmail",
            ) from e

        credentials = Credentials(token=token_response["access_token"])
        gmail_service = build("gmail", "v1", credentials=credentials, cache_discovery=False)
        try:
            profile = gmail_service.users().getProfile(userId="me").execute()
        except HttpError as e:
            raise gmail_http_error(e, "get_profile") from e
        except NETWORK_ERRORS as e:
            raise gmail_network_error(e, "get_profile") from e

        return {
            "access_token": token_response["access_token"],
            "refresh_token": token_response.get("refresh_token"),
            "expires_in": token_response.get("expires_in", 3600),
            "email": profile["emailAddress"],
        }

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        retry=retry_if_exception_type(TRANSIENT_FAILURES),
        reraise=True,
    )
    def _post_refresh(self, refresh_token: str) -> requests.Response:
        return requests.post(
            GOOGLE_TOKEN_URL,
            data={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            },
            timeout=10,
        )

    def refresh_access_token(self, encrypted_refresh_token: Optional[str]) -> Tuple[str, datetime]:
        """
        Refresh an expiring access token.

        Returns:
            Tuple of (new_encrypted_access_token, expires_at)

        Raises:
            ProviderError: PROVIDER_AUTH (user must reconnect) or
                PROVIDER_UNAVAILABLE (retryable)
        """
        if not encrypted_refresh_token:
            raise ProviderError(
                "Gmail connection has expired. Please reconnect your account.",
                code="PROVIDER_AUTH",
                provider="gmail",
            )

        try:
            response = self._post_refresh(decrypt_token(encrypted_refresh_token))
        except TRANSIENT_FAILURES as e:
            raise ProviderError(
                "Could not reach Google. Please try again.",
                code="PROVIDER_UNAVAILABLE",
                retryable=True,
                provider="gmail",
            ) from e

        if response.status_code in (400, 401, 403):
            logger.warning(
                f"Gmail token refresh rejected ({response.status_code})",
                extra={"status_code": response.status_code},
            )
            raise ProviderError(
                "Gmail connection has expired. Please reconnect your account.",
                code="PROVIDER_AUTH",
                provider="gmail",
            )
        if response.status_code >= 400:
            raise ProviderError(
                f"Google token endpoint returned {response.status_code}",
                code="PROVIDER_UNAVAILABLE",
                retryable=True,
                provider="gmail",
            )

        token_data = response.json()
        expires_at = datetime.utcnow() + timedelta(seconds=token_data.get("expires_in", 3600))
        return encrypt_token(token_data["access_token"]), expires_at


# Global OAuth manager instance
gmail_oauth = GmailOAuthManager()
