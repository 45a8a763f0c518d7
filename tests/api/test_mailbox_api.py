"""
API tests for mailbox connection, discovery and provisioning.

Run tests:
    pytest tests/api/test_mailbox_api.py -v
"""

from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, Mock, patch

import httplib2
import pytest
from googleapiclient.errors import HttpError
from sqlalchemy import select

from floworx.core.security import decrypt_token, encrypt_token
from floworx.models import Mailbox
from floworx.modules.mailbox.oauth import gmail_oauth

TOKENS = {
    "access_token": "ya29.access",
    "refresh_token": "1//refresh",
    "expires_in": 3600,
    "email": "owner@hottubpros.com",
}


async def choose_provider(client, headers, provider):
    response = await client.post("/api/onboarding/step/email-provider", json={"provider": provider}, headers=headers)
    assert response.status_code == 200


async def connect_gmail(session, user):
    session.add(
        Mailbox(
            user_id=user.id,
            provider="gmail",
            email_address=user.email,
            encrypted_access_token=encrypt_token("ya29.access"),
            encrypted_refresh_token=encrypt_token("1//refresh"),
            token_expires_at=datetime.utcnow() + timedelta(hours=1),
        )
    )
    await session.commit()


def fake_label_client(labels):
    client = MagicMock()
    client.list_labels.return_value = labels
    client.create_label.side_effect = lambda name, color=None: {"id": f"Label_{name}", "name": name, "type": "user"}
    return client


class TestOAuthConnect:
    """Test the OAuth connect flow."""

    @pytest.mark.asyncio
    @patch("floworx.modules.mailbox.routes.gmail_oauth")
    async def test_authorization_url(self, mock_oauth, client, auth_headers, user):
        mock_oauth.get_authorization_url = AsyncMock(
            return_value=("https://accounts.google.com/o/oauth2/v2/auth?state=abc", "abc")
        )

        response = await client.get("/api/oauth/gmail", headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["authorizationUrl"].startswith("https://accounts.google.com/")
        mock_oauth.get_authorization_url.assert_awaited_once_with(str(user.id))

    @pytest.mark.asyncio
    async def test_outlook_connect_not_implemented(self, client, auth_headers):
        response = await client.get("/api/oauth/outlook", headers=auth_headers)

        assert response.status_code == 501
        assert response.json()["error"]["status"] == "not_implemented"

    @pytest.mark.asyncio
    async def test_unknown_provider(self, client, auth_headers):
        response = await client.get("/api/oauth/yahoo", headers=auth_headers)

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_PROVIDER"

    @pytest.mark.asyncio
    @patch("floworx.modules.mailbox.routes.gmail_oauth")
    async def test_callback_stores_encrypted_tokens(self, mock_oauth, client, session_factory, user, auth_headers):
        """Callback encrypts tokens, records the provider and redirects to the wizard."""
        # Setup
        mock_oauth.verify_state = AsyncMock(return_value=str(user.id))
        mock_oauth.exchange_code_for_tokens = Mock(return_value=TOKENS)

        # Execute
        response = await client.get("/api/oauth/gmail/callback?code=auth-code&state=abc")

        # Verify
        assert response.status_code == 302
        assert response.headers["location"].endswith("/onboarding?connected=gmail")
        mock_oauth.exchange_code_for_tokens.assert_called_once_with("auth-code")

        async with session_factory() as session:
            mailbox = (await session.execute(select(Mailbox).where(Mailbox.user_id == user.id))).scalar_one()
        assert mailbox.encrypted_access_token != "ya29.access"
        assert decrypt_token(mailbox.encrypted_access_token) == "ya29.access"
        assert decrypt_token(mailbox.encrypted_refresh_token) == "1//refresh"
        assert mailbox.is_active is True

        status = (await client.get("/api/onboarding/status", headers=auth_headers)).json()["data"]
        assert status["provider"] == "gmail"

    @pytest.mark.asyncio
    @patch("floworx.modules.mailbox.routes.gmail_oauth")
    async def test_callback_reconnect_updates_existing_mailbox(self, mock_oauth, client, db_session, session_factory, user):
        await connect_gmail(db_session, user)
        mock_oauth.verify_state = AsyncMock(return_value=str(user.id))
        mock_oauth.exchange_code_for_tokens = Mock(return_value={**TOKENS, "access_token": "ya29.second"})

        await client.get("/api/oauth/gmail/callback?code=auth-code&state=abc")

        async with session_factory() as session:
            mailboxes = (await session.execute(select(Mailbox).where(Mailbox.user_id == user.id))).scalars().all()
        assert len(mailboxes) == 1
        assert decrypt_token(mailboxes[0].encrypted_access_token) == "ya29.second"

    @pytest.mark.asyncio
    @patch("floworx.modules.mailbox.routes.gmail_oauth")
    async def test_callback_invalid_state(self, mock_oauth, client):
        mock_oauth.verify_state = AsyncMock(return_value=None)

        response = await client.get("/api/oauth/gmail/callback?code=auth-code&state=forged")

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "INVALID_STATE"
        mock_oauth.exchange_code_for_tokens.assert_not_called()

    @pytest.mark.asyncio
    async def test_callback_profile_lookup_unavailable(self, client, session_factory, user):
        """A Gmail outage during the profile lookup is a retryable 503, not a crash."""
        # Setup
        service = MagicMock()
        service.users.return_value.getProfile.return_value.execute.side_effect = HttpError(
            httplib2.Response({"status": 503}), b"{}"
        )

        # Execute
        with patch.object(gmail_oauth, "verify_state", new=AsyncMock(return_value=str(user.id))), \
             patch("floworx.modules.mailbox.oauth.OAuth2Session") as mock_session, \
             patch("floworx.modules.mailbox.oauth.build", return_value=service):
            mock_session.return_value.fetch_token.return_value = {"access_token": "ya29.a", "expires_in": 3600}
            response = await client.get("/api/oauth/gmail/callback?code=auth-code&state=abc")

        # Verify
        assert response.status_code == 503
        error = response.json()["error"]
        assert error["code"] == "PROVIDER_UNAVAILABLE"
        assert error["retryable"] is True
        async with session_factory() as session:
            mailboxes = (await session.execute(select(Mailbox).where(Mailbox.user_id == user.id))).scalars().all()
        assert mailboxes == []

    @pytest.mark.asyncio
    async def test_callback_missing_code(self, client):
        response = await client.get("/api/oauth/gmail/callback?state=abc")

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "MISSING_CODE"


class TestDiscoverAndProvision:
    """Test discovery and provisioning endpoints."""

    @pytest.mark.asyncio
    async def test_no_provider_chosen(self, client, auth_headers):
        response = await client.get("/api/mailbox/discover", headers=auth_headers)

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "NO_PROVIDER"

    @pytest.mark.asyncio
    async def test_outlook_discover_not_implemented(self, client, auth_headers):
        """Outlook says not implemented instead of returning an empty mailbox."""
        await choose_provider(client, auth_headers, "outlook")

        response = await client.get("/api/mailbox/discover", headers=auth_headers)

        assert response.status_code == 501
        error = response.json()["error"]
        assert error["status"] == "not_implemented"
        assert error["provider"] == "outlook"
        assert error["operation"] == "discover"

    @pytest.mark.asyncio
    async def test_gmail_not_connected(self, client, auth_headers):
        await choose_provider(client, auth_headers, "gmail")

        response = await client.get("/api/mailbox/discover", headers=auth_headers)

        assert response.status_code == 502
        assert response.json()["error"]["code"] == "MAILBOX_NOT_CONNECTED"

    @pytest.mark.asyncio
    async def test_gmail_discover(self, client, db_session, user, auth_headers):
        await choose_provider(client, auth_headers, "gmail")
        await connect_gmail(db_session, user)
        labels = [
            {"id": "INBOX", "name": "INBOX", "type": "system"},
            {"id": "Label_1", "name": "Sales", "type": "user"},
        ]

        with patch("floworx.modules.mailbox.gmail.GmailLabelClient", return_value=fake_label_client(labels)):
            response = await client.get("/api/mailbox/discover", headers=auth_headers)

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["data"]["userFolders"] == 1
        assert body["data"]["folders"][0]["name"] == "Sales"

    @pytest.mark.asyncio
    async def test_gmail_discover_suggests_mapping(self, client, db_session, user, auth_headers):
        """Discovery tells the wizard which labels to reuse and which to create."""
        # Setup
        await choose_provider(client, auth_headers, "gmail")
        await client.post(
            "/api/onboarding/step/business-categories",
            json={"categories": [{"name": "Sales"}, {"name": "Warranty"}]},
            headers=auth_headers,
        )
        await connect_gmail(db_session, user)
        labels = [{"id": "Label_1", "name": "sales", "type": "user"}]

        # Execute
        with patch("floworx.modules.mailbox.gmail.GmailLabelClient", return_value=fake_label_client(labels)):
            response = await client.get("/api/mailbox/discover", headers=auth_headers)

        # Verify
        assert response.status_code == 200
        data = response.json()["data"]
        assert [(m["categoryName"], m["action"], m["mailboxLabelName"]) for m in data["suggestedMapping"]] == [
            ("Sales", "reuse", "sales"),
            ("Warranty", "create", "FloWorx/Warranty"),
        ]
        assert data["suggestions"]["reuse"][0]["folderId"] == "Label_1"
        assert data["analysis"]["matchedCount"] == 1

    @pytest.mark.asyncio
    async def test_provision_from_mappings(self, client, db_session, user, auth_headers):
        """Without a body, label mappings are provisioned and ids recorded."""
        # Setup
        await choose_provider(client, auth_headers, "gmail")
        await client.post(
            "/api/onboarding/step/business-categories", json={"categories": [{"name": "Sales"}]}, headers=auth_headers
        )
        await client.post(
            "/api/onboarding/step/label-mapping",
            json={"mappings": [{"categoryName": "Sales", "mailboxLabelName": "FloWorx/Sales"}]},
            headers=auth_headers,
        )
        await connect_gmail(db_session, user)
        fake = fake_label_client([{"id": "Label_9", "name": "FloWorx", "type": "user"}])

        # Execute
        with patch("floworx.modules.mailbox.gmail.GmailLabelClient", return_value=fake):
            response = await client.post("/api/mailbox/provision", headers=auth_headers)

        # Verify
        assert response.status_code == 200
        data = response.json()["data"]
        assert [c["name"] for c in data["created"]] == ["FloWorx/Sales"]
        fake.create_label.assert_called_once_with("FloWorx/Sales", None)
        status = (await client.get("/api/onboarding/status", headers=auth_headers)).json()["data"]
        assert status["labelMappings"][0]["mailboxLabelId"] == "Label_FloWorx/Sales"

    @pytest.mark.asyncio
    async def test_provision_explicit_items_validated(self, client, auth_headers):
        await choose_provider(client, auth_headers, "gmail")

        response = await client.post(
            "/api/mailbox/provision", json={"items": [{"path": ["Sales"], "color": "blue"}]}, headers=auth_headers
        )

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_find_requires_query(self, client, auth_headers):
        await choose_provider(client, auth_headers, "gmail")

        response = await client.get("/api/mailbox/find", headers=auth_headers)

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "MISSING_QUERY"

    @pytest.mark.asyncio
    async def test_outlook_statistics_not_implemented(self, client, auth_headers):
        await choose_provider(client, auth_headers, "outlook")

        response = await client.get("/api/mailbox/statistics", headers=auth_headers)

        assert response.status_code == 501
