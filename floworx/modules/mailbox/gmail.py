"""
Gmail mailbox adapter.

Gmail has no real folders: labels whose names contain "/" are displayed as a
hierarchy ("Sales/Inbox" nests under "Sales"). Discovery reads user labels;
provisioning creates one label per item, named by joining the path with "/".

The Google client library is synchronous, so every API call runs in a worker
thread under PROVIDER_TIMEOUT_SECONDS. Retryable failures (429, 5xx, network)
are retried with exponential backoff inside that budget.

CRITICAL SECURITY:
- NEVER log access tokens
- Only label endpoints are called; message content is never read
"""

import asyncio
import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional

from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import Retrying, retry_if_exception, stop_after_attempt, wait_exponential

from floworx.core.config import settings
from floworx.core.errors import ProviderError
from floworx.core.security import decrypt_token
from floworx.models import Mailbox, User
from floworx.modules.mailbox.base import (
    Implemented,
    MailboxAdapter,
    MailboxFolder,
    ProviderResult,
    ProvisionItem,
    Unavailable,
    build_taxonomy,
    discovery_summary,
    is_valid_hex_color,
    link_folders,
    split_path,
    taxonomy_depth,
)
from floworx.modules.mailbox.errors import NETWORK_ERRORS, gmail_http_error, gmail_network_error
from floworx.modules.mailbox.oauth import GmailOAuthManager, gmail_oauth

logger = logging.getLogger(__name__)

PROVIDER = "gmail"
LABEL_TEXT_COLOR = "#ffffff"


def _is_retryable(error: BaseException) -> bool:
    return isinstance(error, ProviderError) and error.retryable


class GmailLabelClient:
    """
    Synchronous Gmail label client with retry and error mapping.

    Usage:
        client = GmailLabelClient(mailbox)
        labels = client.list_labels()
        label = client.create_label("Sales/Inbox", color="#4a86e8")
    """

    def __init__(self, mailbox: Mailbox, max_retries: Optional[int] = None, backoff: float = 1.0):
        if mailbox.provider != PROVIDER:
            raise ValueError(f"Mailbox {mailbox.id} is not a Gmail account (provider={mailbox.provider})")

        self.mailbox_id = str(mailbox.id)
        self._encrypted_access_token = mailbox.encrypted_access_token
        self._max_retries = max_retries or settings.PROVIDER_MAX_RETRIES
        self._backoff = backoff
        self._service = None

    def _build_service(self):
        access_token = decrypt_token(self._encrypted_access_token)
        credentials = Credentials(token=access_token)
        return build("gmail", "v1", credentials=credentials, cache_discovery=False)

    def _get_service(self):
        if not self._service:
            self._service = self._build_service()
        return self._service

    def _execute(self, request_func: Callable[[], Dict], operation: str) -> Dict:
        """
        Run a Gmail API call, retrying retryable failures.

        Raises:
            ProviderError: After retries are exhausted, or immediately for
                non-retryable failures
        """
        retrying = Retrying(
            stop=stop_after_attempt(self._max_retries),
            wait=wait_exponential(multiplier=self._backoff, max=16),
            retry=retry_if_exception(_is_retryable),
            reraise=True,
        )
        for attempt in retrying:
            with attempt:
                try:
                    return request_func()
                except HttpError as e:
                    raise gmail_http_error(e, operation, {"mailbox_id": self.mailbox_id}) from e
                except NETWORK_ERRORS as e:
                    raise gmail_network_error(e, operation, {"mailbox_id": self.mailbox_id}) from e

    def list_labels(self) -> List[Dict]:
        """All labels (system and user) as returned by users.labels.list."""
        response = self._execute(
            lambda: self._get_service().users().labels().list(userId="me").execute(),
            "list_labels",
        )
        return response.get("labels", [])

    def create_label(self, name: str, color: Optional[str] = None) -> Dict:
        body = {
            "name": name,
            "labelListVisibility": "labelShow",
            "messageListVisibility": "show",
        }
        if is_valid_hex_color(color):
            body["color"] = {"backgroundColor": color.lower(), "textColor": LABEL_TEXT_COLOR}

        logger.info(
            f"Creating Gmail label for mailbox {self.mailbox_id}",
            extra={"mailbox_id": self.mailbox_id, "label_name": name},
        )
        return self._execute(
            lambda: self._get_service().users().labels().create(userId="me", body=body).execute(),
            "create_label",
        )


def label_to_folder(label: Dict) -> MailboxFolder:
    path = split_path(label.get("name", "")) or [label.get("name", "")]
    return MailboxFolder(
        id=label["id"],
        name=path[-1],
        path=path,
        color=(label.get("color") or {}).get("backgroundColor"),
        type=label.get("type", "user"),
    )


class GmailAdapter(MailboxAdapter):
    """
    Usage:
        adapter = GmailAdapter(db)
        result = await adapter.provision(user, [ProvisionItem(path=["Sales", "Inbox"])])
    """

    provider = PROVIDER

    def __init__(
        self,
        db: AsyncSession,
        client_factory: Optional[Callable[[Mailbox], GmailLabelClient]] = None,
        oauth: Optional[GmailOAuthManager] = None,
        timeout: Optional[float] = None,
    ):
        self.db = db
        self._client_factory = client_factory or GmailLabelClient
        self._oauth = oauth or gmail_oauth
        self._timeout = timeout or settings.PROVIDER_TIMEOUT_SECONDS

    async def _call(self, func, *args):
        try:
            return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout=self._timeout)
        except asyncio.TimeoutError as e:
            raise ProviderError(
                "Gmail did not respond in time. Please try again.",
                code="PROVIDER_TIMEOUT",
                retryable=True,
                provider=PROVIDER,
            ) from e

    async def _load_mailbox(self, user: User) -> Mailbox:
        result = await self.db.execute(
            select(Mailbox)
            .where(
                Mailbox.user_id == user.id,
                Mailbox.provider == PROVIDER,
                Mailbox.is_active.is_(True),
            )
            .order_by(Mailbox.created_at.desc())
        )
        mailbox = result.scalars().first()
        if mailbox is None:
            raise ProviderError(
                "No Gmail account connected. Connect Gmail first.",
                code="MAILBOX_NOT_CONNECTED",
                provider=PROVIDER,
            )

        if mailbox.token_expiring:
            try:
                encrypted_access, expires_at = await self._call(
                    self._oauth.refresh_access_token, mailbox.encrypted_refresh_token
                )
            except ProviderError as e:
                if e.code == "PROVIDER_AUTH":
                    mailbox.is_active = False
                    await self.db.commit()
                raise
            mailbox.encrypted_access_token = encrypted_access
            mailbox.token_expires_at = expires_at
            await self.db.flush()
            logger.info(f"Gmail token refreshed for mailbox {mailbox.id}", extra={"mailbox_id": str(mailbox.id)})

        return mailbox

    async def _list_labels(self, user: User):
        mailbox = await self._load_mailbox(user)
        client = self._client_factory(mailbox)
        labels = await self._call(client.list_labels)
        mailbox.last_used_at = datetime.utcnow()
        return client, labels

    async def _user_folders(self, user: User) -> List[MailboxFolder]:
        _, labels = await self._list_labels(user)
        return link_folders([label_to_folder(label) for label in labels if label.get("type") == "user"])

    def _unavailable(self, user: User, operation: str, error: ProviderError) -> Unavailable:
        logger.warning(
            f"Gmail {operation} failed for user {user.id}: {error.code}",
            extra={"user_id": str(user.id), "operation": operation, "code": error.code},
        )
        return Unavailable(error)

    async def discover(self, user: User) -> ProviderResult:
        try:
            _, labels = await self._list_labels(user)
        except ProviderError as e:
            return self._unavailable(user, "discover", e)

        user_labels = [label for label in labels if label.get("type") == "user"]
        folders = link_folders([label_to_folder(label) for label in user_labels])
        return Implemented(discovery_summary(folders, system_count=len(labels) - len(user_labels)))

    async def provision(self, user: User, items: List[ProvisionItem]) -> ProviderResult:
        """
        Create missing labels, parents before children.

        Existing labels are matched case-insensitively against one snapshot
        taken before the batch, plus the labels created by the batch itself.
        """
        try:
            client, labels = await self._list_labels(user)
        except ProviderError as e:
            return self._unavailable(user, "provision", e)

        existing = {label["name"].casefold(): label for label in labels}
        created, skipped, failed = [], [], []

        for item in sorted(items, key=lambda i: len(i.path)):
            name = item.name
            if item.type == "category":
                failed.append({
                    "path": item.path,
                    "name": name,
                    "error": "Gmail has no categories; provision a label instead",
                    "code": "UNSUPPORTED_ITEM",
                })
                continue

            found = existing.get(name.casefold())
            if found:
                skipped.append({"path": item.path, "name": name, "id": found["id"], "reason": "already_exists"})
                continue

            try:
                label = await self._call(client.create_label, name, item.color)
            except ProviderError as e:
                if e.code == "ALREADY_EXISTS":
                    skipped.append({"path": item.path, "name": name, "id": None, "reason": "already_exists"})
                else:
                    failed.append({"path": item.path, "name": name, "error": e.message, "code": e.code})
                continue

            existing[name.casefold()] = label
            created.append({"path": item.path, "name": name, "id": label.get("id"), "color": item.color})

        logger.info(
            f"Gmail provisioning for user {user.id}: "
            f"{len(created)} created, {len(skipped)} skipped, {len(failed)} failed",
            extra={"user_id": str(user.id)},
        )
        return Implemented({"created": created, "skipped": skipped, "failed": failed})

    async def find_by_path(self, user: User, path: List[str]) -> ProviderResult:
        wanted = [segment.strip().casefold() for segment in path if segment.strip()]
        try:
            folders = await self._user_folders(user)
        except ProviderError as e:
            return self._unavailable(user, "find_by_path", e)

        match = next((f for f in folders if [p.casefold() for p in f.path] == wanted), None)
        return Implemented(match.to_response() if match else None)

    async def find_by_name(self, user: User, name: str) -> ProviderResult:
        wanted = name.strip().casefold()
        try:
            folders = await self._user_folders(user)
        except ProviderError as e:
            return self._unavailable(user, "find_by_name", e)

        match = next((f for f in folders if f.full_name.casefold() == wanted), None)
        return Implemented(match.to_response() if match else None)

    async def get_statistics(self, user: User) -> ProviderResult:
        try:
            _, labels = await self._list_labels(user)
        except ProviderError as e:
            return self._unavailable(user, "get_statistics", e)

        user_labels = [label_to_folder(label) for label in labels if label.get("type") == "user"]
        return Implemented({
            "provider": PROVIDER,
            "totalFolders": len(labels),
            "userFolders": len(user_labels),
            "systemFolders": len(labels) - len(user_labels),
            "categories": 0,
            "hierarchyDepth": taxonomy_depth(build_taxonomy(user_labels)),
        })
