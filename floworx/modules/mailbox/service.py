"""
Mailbox service - picks the adapter for the user's provider and connects
the adapter results back to onboarding data (label suggestions from the
user's categories, label ids recorded on mappings).
"""

import logging
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from floworx.core.errors import ValidationError
from floworx.models import BusinessCategory, LabelMapping, Mailbox, OnboardingState, User
from floworx.modules.mailbox.base import (
    Implemented,
    MailboxAdapter,
    MailboxFolder,
    ProviderResult,
    ProvisionItem,
    split_path,
)
from floworx.modules.mailbox.gmail import GmailAdapter
from floworx.modules.mailbox.outlook import OutlookAdapter
from floworx.modules.mailbox.suggest import suggest_mapping

logger = logging.getLogger(__name__)

ADAPTERS = {
    "gmail": GmailAdapter,
    "outlook": OutlookAdapter,
}


def get_adapter(provider: Optional[str], db: AsyncSession) -> MailboxAdapter:
    """
    Raises:
        ValidationError: No provider chosen yet, or an unknown provider
    """
    if not provider:
        raise ValidationError("Choose an email provider first", code="NO_PROVIDER")
    adapter_class = ADAPTERS.get(provider)
    if adapter_class is None:
        raise ValidationError(f"Unsupported email provider: {provider}", code="INVALID_PROVIDER")
    return adapter_class(db)


class MailboxService:
    """
    Usage:
        service = MailboxService(db)
        result = await service.provision(user)  # from the user's label mappings
    """

    def __init__(self, db: AsyncSession, adapter: Optional[MailboxAdapter] = None):
        self.db = db
        self._adapter = adapter

    async def adapter_for(self, user: User) -> MailboxAdapter:
        if self._adapter is not None:
            return self._adapter
        state = await self.db.get(OnboardingState, user.id)
        return get_adapter(state.provider if state else None, self.db)

    async def discover(self, user: User) -> ProviderResult:
        """Discovery data plus label suggestions for the user's categories."""
        adapter = await self.adapter_for(user)
        result = await adapter.discover(user)
        if not isinstance(result, Implemented):
            return result

        categories = await self.db.execute(
            select(BusinessCategory.name)
            .where(BusinessCategory.user_id == user.id)
            .order_by(BusinessCategory.position, BusinessCategory.created_at)
        )
        folders = [MailboxFolder.model_validate(f) for f in result.data["folders"]]
        return Implemented({**result.data, **suggest_mapping(list(categories.scalars().all()), folders)})

    async def mapping_items(self, user: User) -> List[ProvisionItem]:
        """One folder item per label mapping, in category order."""
        result = await self.db.execute(
            select(LabelMapping.mailbox_label_name)
            .join(BusinessCategory, BusinessCategory.id == LabelMapping.category_id)
            .where(LabelMapping.user_id == user.id)
            .order_by(BusinessCategory.position)
        )
        items = []
        for label_name in result.scalars().all():
            path = split_path(label_name)
            if path:
                items.append(ProvisionItem(path=path))
        return items

    async def record_label_ids(self, user: User, outcome: Dict) -> int:
        """
        Store provider label ids on matching label mappings.

        Returns:
            Number of mappings updated
        """
        ids_by_name = {}
        for entry in outcome.get("created", []) + outcome.get("skipped", []):
            if entry.get("id"):
                ids_by_name["/".join(entry["path"]).casefold()] = entry["id"]
        if not ids_by_name:
            return 0

        result = await self.db.execute(select(LabelMapping).where(LabelMapping.user_id == user.id))
        updated = 0
        for mapping in result.scalars().all():
            key = "/".join(split_path(mapping.mailbox_label_name)).casefold()
            label_id = ids_by_name.get(key)
            if label_id and mapping.mailbox_label_id != label_id:
                mapping.mailbox_label_id = label_id
                updated += 1
        await self.db.flush()
        return updated

    async def provision(self, user: User, items: Optional[List[ProvisionItem]] = None) -> ProviderResult:
        """
        Provision explicit items, or the user's label mappings when none are given.

        Raises:
            ValidationError: Nothing to provision
        """
        from_mappings = not items
        if from_mappings:
            items = await self.mapping_items(user)
            if not items:
                raise ValidationError("No label mappings to provision", code="NOTHING_TO_PROVISION")

        adapter = await self.adapter_for(user)
        result = await adapter.provision(user, items)

        if isinstance(result, Implemented) and from_mappings:
            updated = await self.record_label_ids(user, result.data)
            logger.info(
                f"Recorded {updated} label ids for user {user.id}",
                extra={"user_id": str(user.id)},
            )
        return result

    async def connected_mailbox(self, user: User, provider: str) -> Optional[Mailbox]:
        result = await self.db.execute(
            select(Mailbox).where(Mailbox.user_id == user.id, Mailbox.provider == provider)
        )
        return result.scalars().first()
