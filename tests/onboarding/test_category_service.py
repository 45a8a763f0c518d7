"""
Unit tests for business category configuration.

Run tests:
    pytest tests/onboarding/test_category_service.py -v
"""

from unittest.mock import Mock

import pytest

from floworx.core.errors import ConflictError, NotFoundError, ValidationError
from floworx.modules.onboarding.categories import CategoryService, category_key
from floworx.modules.onboarding.store import OnboardingStore


@pytest.fixture
def categories(db_session):
    return CategoryService(db_session)


class TestCategoryKey:
    def test_key_ignores_case_and_whitespace(self):
        assert category_key("  Service Calls ") == category_key("service calls")


class TestAddCategory:
    """Test adding categories."""

    @pytest.mark.asyncio
    async def test_add_keeps_insertion_order(self, categories, user):
        """Categories are listed in the order they were added."""
        await categories.add_category(user, "Sales")
        await categories.add_category(user, "Service", "Repair requests")
        await categories.add_category(user, "Billing")

        listed = await categories.list_categories(user)

        assert [c.name for c in listed] == ["Sales", "Service", "Billing"]
        assert listed[1].description == "Repair requests"

    @pytest.mark.asyncio
    async def test_duplicate_name_case_insensitive(self, categories, user):
        await categories.add_category(user, "Sales")

        with pytest.raises(ConflictError) as exc_info:
            await categories.add_category(user, " SALES ")

        assert exc_info.value.code == "CATEGORY_EXISTS"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("name", ["", "   ", "x" * 101])
    async def test_invalid_names(self, categories, user, name):
        with pytest.raises(ValidationError):
            await categories.add_category(user, name)

    @pytest.mark.asyncio
    async def test_count_and_lookup(self, categories, user):
        await categories.add_category(user, "Sales")

        assert await categories.count(user) == 1
        assert (await categories.get_by_name(user, "sales")).name == "Sales"
        assert await categories.get_by_name(user, "Billing") is None


class TestRemoveCategory:
    """Test removal and dependents."""

    async def configure(self, db_session, user):
        store = OnboardingStore(db_session, dispatcher=Mock())
        await store.set_step(user, "business-categories", {"categories": [{"name": "Sales"}, {"name": "Service"}]})
        await store.set_step(
            user, "label-mapping", {"mappings": [{"categoryName": "Sales", "mailboxLabelName": "FloWorx/Sales"}]}
        )
        await store.set_step(
            user,
            "team-setup",
            {"teamMembers": [{"name": "Sam", "email": "sam@hottubpros.com", "categoryName": "Sales"}]},
        )
        return store

    @pytest.mark.asyncio
    async def test_remove_unused(self, categories, db_session, user):
        await self.configure(db_session, user)

        await categories.remove_category(user, "service")

        assert [c.name for c in await categories.list_categories(user)] == ["Sales"]

    @pytest.mark.asyncio
    async def test_remove_missing(self, categories, user):
        with pytest.raises(NotFoundError) as exc_info:
            await categories.remove_category(user, "Nope")
        assert exc_info.value.code == "CATEGORY_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_remove_in_use_names_dependents(self, categories, db_session, user):
        """Removal of a referenced category is refused and explains why."""
        await self.configure(db_session, user)

        with pytest.raises(ConflictError) as exc_info:
            await categories.remove_category(user, "Sales")

        error = exc_info.value
        assert error.code == "CATEGORY_IN_USE"
        assert error.extra["dependents"] == {
            "labelMappings": ["FloWorx/Sales"],
            "teamMembers": ["sam@hottubpros.com"],
        }
        assert "FloWorx/Sales" in error.message

    @pytest.mark.asyncio
    async def test_remove_cascade(self, categories, db_session, user):
        """Cascade drops the mapping and unassigns team members."""
        store = await self.configure(db_session, user)

        await categories.remove_category(user, "Sales", cascade=True)
        status = await store.get_status(user)

        assert [c.name for c in status.categories] == ["Service"]
        assert status.label_mappings == []
        assert status.team_members[0].email == "sam@hottubpros.com"
        assert status.team_members[0].category_name is None

    @pytest.mark.asyncio
    async def test_last_category_kept_after_completion(self, categories, db_session, user):
        """A completed onboarding always keeps at least one category."""
        # Setup
        store = await self.configure(db_session, user)
        await store.complete(user)
        await categories.remove_category(user, "Service")

        # Execute
        with pytest.raises(ValidationError) as exc_info:
            await categories.remove_category(user, "Sales", cascade=True)

        # Verify
        assert exc_info.value.code == "LAST_CATEGORY"
        assert [c.name for c in await categories.list_categories(user)] == ["Sales"]

    @pytest.mark.asyncio
    async def test_last_category_removable_before_completion(self, categories, user):
        await categories.add_category(user, "Sales")

        await categories.remove_category(user, "Sales")

        assert await categories.count(user) == 0
