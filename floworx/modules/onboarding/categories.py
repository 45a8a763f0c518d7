"""
Business category configuration.

Categories are unique per user by case-insensitive name and are listed in
insertion order. Label mappings and team members reference categories by id.

Removing a category that something still references is rejected with a
ConflictError naming the dependents, unless the caller passes cascade=True,
in which case its label mapping is deleted and team members are left without
a category.

Once onboarding is completed the last category cannot be removed.
"""

import logging
from typing import Dict, Iterable, List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from floworx.core.errors import ConflictError, NotFoundError, ValidationError
from floworx.models import BusinessCategory, LabelMapping, OnboardingState, TeamMember, User

logger = logging.getLogger(__name__)

MAX_CATEGORY_NAME_LENGTH = 100


def category_key(name: str) -> str:
    """Uniqueness key for a category name."""
    return name.strip().casefold()


class CategoryService:
    """
    Usage:
        categories = CategoryService(db)
        await categories.add_category(user, "Service Calls", "Repair requests")
        await categories.remove_category(user, "Service Calls", cascade=True)
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_categories(self, user: User) -> List[BusinessCategory]:
        result = await self.db.execute(
            select(BusinessCategory)
            .where(BusinessCategory.user_id == user.id)
            .order_by(BusinessCategory.position, BusinessCategory.created_at)
        )
        return list(result.scalars().all())

    async def get_by_name(self, user: User, name: str) -> Optional[BusinessCategory]:
        result = await self.db.execute(
            select(BusinessCategory).where(
                BusinessCategory.user_id == user.id,
                BusinessCategory.name_key == category_key(name),
            )
        )
        return result.scalar_one_or_none()

    async def resolve_names(self, user: User, names: Iterable[str]) -> Dict[str, BusinessCategory]:
        """
        Map category names to categories.

        Returns:
            Dict keyed by category_key(name)

        Raises:
            ValidationError: If any name does not match an existing category
        """
        by_key = {c.name_key: c for c in await self.list_categories(user)}
        missing = sorted({n for n in names if category_key(n) not in by_key})
        if missing:
            raise ValidationError(
                f"Unknown category: {', '.join(missing)}",
                code="UNKNOWN_CATEGORY",
                extra={"categories": missing},
            )
        return by_key

    async def count(self, user: User) -> int:
        result = await self.db.execute(
            select(func.count()).select_from(BusinessCategory).where(BusinessCategory.user_id == user.id)
        )
        return result.scalar_one()

    async def _next_position(self, user: User) -> int:
        result = await self.db.execute(
            select(func.max(BusinessCategory.position)).where(BusinessCategory.user_id == user.id)
        )
        current = result.scalar_one_or_none()
        return 0 if current is None else current + 1

    async def add_category(self, user: User, name: str, description: Optional[str] = None) -> BusinessCategory:
        """
        Raises:
            ValidationError: Blank or overlong name
            ConflictError: A category with this name already exists (case-insensitive)
        """
        name = (name or "").strip()
        if not name:
            raise ValidationError("Category name is required", code="INVALID_CATEGORY")
        if len(name) > MAX_CATEGORY_NAME_LENGTH:
            raise ValidationError(
                f"Category name must be at most {MAX_CATEGORY_NAME_LENGTH} characters",
                code="INVALID_CATEGORY",
            )

        if await self.get_by_name(user, name):
            raise ConflictError(f"Category '{name}' already exists", code="CATEGORY_EXISTS")

        category = BusinessCategory(
            user_id=user.id,
            name=name,
            name_key=category_key(name),
            description=description,
            position=await self._next_position(user),
        )
        self.db.add(category)
        try:
            await self.db.flush()
        except IntegrityError as e:
            await self.db.rollback()
            raise ConflictError(f"Category '{name}' already exists", code="CATEGORY_EXISTS") from e

        logger.info(f"Category added for user {user.id}", extra={"user_id": str(user.id)})
        return category

    async def dependents(self, category: BusinessCategory) -> Dict[str, List[str]]:
        """Label names and team member emails that reference a category."""
        mappings = await self.db.execute(
            select(LabelMapping.mailbox_label_name).where(LabelMapping.category_id == category.id)
        )
        members = await self.db.execute(
            select(TeamMember.email).where(TeamMember.category_id == category.id).order_by(TeamMember.position)
        )
        return {
            "labelMappings": list(mappings.scalars().all()),
            "teamMembers": list(members.scalars().all()),
        }

    async def remove_category(self, user: User, name: str, cascade: bool = False) -> None:
        """
        Raises:
            NotFoundError: No category with this name
            ValidationError: Last category of a completed onboarding
            ConflictError: Category is referenced and cascade is False
        """
        category = await self.get_by_name(user, name)
        if category is None:
            raise NotFoundError(f"Category '{name}' not found", code="CATEGORY_NOT_FOUND")

        state = await self.db.get(OnboardingState, user.id)
        if state is not None and state.completed and await self.count(user) == 1:
            raise ValidationError(
                "An activated account needs at least one business category",
                code="LAST_CATEGORY",
            )

        dependents = await self.dependents(category)
        if (dependents["labelMappings"] or dependents["teamMembers"]) and not cascade:
            parts = []
            if dependents["labelMappings"]:
                parts.append(f"label mapping {', '.join(dependents['labelMappings'])}")
            if dependents["teamMembers"]:
                parts.append(f"team members {', '.join(dependents['teamMembers'])}")
            raise ConflictError(
                f"Category '{category.name}' is used by {' and '.join(parts)}",
                code="CATEGORY_IN_USE",
                extra={"dependents": dependents},
            )

        await self.delete_categories([category.id])
        logger.info(
            f"Category removed for user {user.id} (cascade={cascade})",
            extra={"user_id": str(user.id)},
        )

    async def delete_categories(self, category_ids: List) -> None:
        """Delete categories, their label mappings, and team members' references to them."""
        if not category_ids:
            return
        await self.db.execute(delete(LabelMapping).where(LabelMapping.category_id.in_(category_ids)))
        await self.db.execute(
            update(TeamMember).where(TeamMember.category_id.in_(category_ids)).values(category_id=None)
        )
        await self.db.execute(delete(BusinessCategory).where(BusinessCategory.id.in_(category_ids)))
