"""
Onboarding state store.

Each wizard step owns one slice of the user's onboarding state. Re-submitting
a step replaces that slice; nothing is appended. nextStep is a hint for the
frontend derived from which slices are filled, not a guarded state machine:
steps can be revisited and edited in any order.

Completion is the hand-off point to the workflow engine. It is idempotent:
the per-user WorkflowDeployment row is moved to "queued" with a conditional
UPDATE, and only the caller that wins that update dispatches the event.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from floworx.core.errors import ValidationError
from floworx.core.sentry import capture_business_error
from floworx.models import (
    BusinessCategory,
    LabelMapping,
    OnboardingState,
    TeamMember,
    User,
    WorkflowDeployment,
)
from floworx.models.workflow_deployment import (
    DEPLOYMENT_FAILED,
    DEPLOYMENT_PENDING,
    DEPLOYMENT_QUEUED,
    DISPATCHABLE_STATUSES,
)
from floworx.modules.onboarding.categories import CategoryService, category_key
from floworx.modules.onboarding.steps import (
    BusinessCategoriesStep,
    BusinessTypeStep,
    EmailProviderStep,
    LabelMappingStep,
    TeamSetupStep,
    parse_step_payload,
)

logger = logging.getLogger(__name__)

# Order the wizard walks through; "complete" once activated
STEP_EMAIL_PROVIDER = "email-provider"
STEP_BUSINESS_TYPE = "business-type"
STEP_BUSINESS_CATEGORIES = "business-categories"
STEP_LABEL_MAPPING = "label-mapping"
STEP_TEAM_SETUP = "team-setup"
STEP_REVIEW = "review"
STEP_COMPLETE = "complete"

Dispatcher = Callable[[str], Any]


class CategoryView(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    name: str
    description: Optional[str] = None


class LabelMappingView(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    category_name: str
    mailbox_label_name: str
    mailbox_label_id: Optional[str] = None


class TeamMemberView(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    name: str
    email: str
    category_name: Optional[str] = None
    notification_enabled: bool = True


class OnboardingStatus(BaseModel):
    """What the wizard loads on mount."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    user_id: str
    provider: Optional[str] = None
    business_type_id: Optional[int] = None
    categories: List[CategoryView] = []
    label_mappings: List[LabelMappingView] = []
    team_members: List[TeamMemberView] = []
    team_setup_completed: bool = False
    completed: bool = False
    completed_at: Optional[datetime] = None
    next_step: str

    def to_response(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


def compute_next_step(
    state: OnboardingState,
    category_count: int,
    mapping_count: int,
) -> str:
    if state.completed:
        return STEP_COMPLETE
    if not state.provider:
        return STEP_EMAIL_PROVIDER
    if not state.business_type_id:
        return STEP_BUSINESS_TYPE
    if category_count == 0:
        return STEP_BUSINESS_CATEGORIES
    if mapping_count == 0:
        return STEP_LABEL_MAPPING
    if not state.team_setup_completed:
        return STEP_TEAM_SETUP
    return STEP_REVIEW


def _default_dispatcher(user_id: str) -> Any:
    from floworx.modules.onboarding.events import dispatch_onboarding_completed

    return dispatch_onboarding_completed(user_id)


class OnboardingStore:
    """
    Usage:
        store = OnboardingStore(db)
        status = await store.set_step(user, "business-categories", {"categories": [{"name": "Sales"}]})
        status, deployment = await store.complete(user)
    """

    def __init__(self, db: AsyncSession, dispatcher: Optional[Dispatcher] = None):
        self.db = db
        self.categories = CategoryService(db)
        self._dispatch = dispatcher or _default_dispatcher

    async def get_state(self, user: User) -> OnboardingState:
        """Load the user's state row, creating it on first visit."""
        state = await self.db.get(OnboardingState, user.id)
        if state is None:
            state = OnboardingState(user_id=user.id)
            self.db.add(state)
            try:
                await self.db.flush()
            except IntegrityError:
                # Created by a concurrent request (second browser tab)
                await self.db.rollback()
                state = await self.db.get(OnboardingState, user.id)
        return state

    async def get_status(self, user: User) -> OnboardingStatus:
        state = await self.get_state(user)
        categories = await self.categories.list_categories(user)
        names_by_id = {c.id: c.name for c in categories}
        order_by_id = {c.id: index for index, c in enumerate(categories)}

        mappings_result = await self.db.execute(
            select(LabelMapping).where(LabelMapping.user_id == user.id)
        )
        # Mappings follow category order
        mappings = sorted(
            (m for m in mappings_result.scalars().all() if m.category_id in names_by_id),
            key=lambda m: order_by_id[m.category_id],
        )

        members_result = await self.db.execute(
            select(TeamMember).where(TeamMember.user_id == user.id).order_by(TeamMember.position)
        )
        members = members_result.scalars().all()

        return OnboardingStatus(
            user_id=str(user.id),
            provider=state.provider,
            business_type_id=state.business_type_id,
            categories=[CategoryView(name=c.name, description=c.description) for c in categories],
            label_mappings=[
                LabelMappingView(
                    category_name=names_by_id[m.category_id],
                    mailbox_label_name=m.mailbox_label_name,
                    mailbox_label_id=m.mailbox_label_id,
                )
                for m in mappings
            ],
            team_members=[
                TeamMemberView(
                    name=m.name,
                    email=m.email,
                    category_name=names_by_id.get(m.category_id),
                    notification_enabled=m.notification_enabled,
                )
                for m in members
            ],
            team_setup_completed=state.team_setup_completed,
            completed=state.completed,
            completed_at=state.completed_at,
            next_step=compute_next_step(state, len(categories), len(mappings)),
        )

    async def set_step(self, user: User, step_name: str, payload: Any) -> OnboardingStatus:
        """
        Persist one step's slice of state, replacing what was there.

        Raises:
            ValidationError: Unknown step, invalid payload, or a reference to
                a category that does not exist
        """
        step = parse_step_payload(step_name, payload)
        state = await self.get_state(user)

        if isinstance(step, EmailProviderStep):
            state.provider = step.provider
        elif isinstance(step, BusinessTypeStep):
            state.business_type_id = step.business_type_id
        elif isinstance(step, BusinessCategoriesStep):
            await self._replace_categories(user, step)
        elif isinstance(step, LabelMappingStep):
            await self._replace_label_mappings(user, step)
        elif isinstance(step, TeamSetupStep):
            await self._replace_team_members(user, step)
            state.team_setup_completed = True

        state.updated_at = datetime.utcnow()
        await self.db.flush()

        logger.info(
            f"Onboarding step {step_name} saved for user {user.id}",
            extra={"user_id": str(user.id), "step": step_name},
        )
        return await self.get_status(user)

    async def _replace_categories(self, user: User, step: BusinessCategoriesStep) -> None:
        """
        Upsert submitted categories by name and drop the rest.

        Categories that survive keep their id, so their mappings and team
        assignments survive too. Dropped categories take their mappings
        with them.
        """
        existing = {c.name_key: c for c in await self.categories.list_categories(user)}
        keep = set()

        for position, item in enumerate(step.categories):
            key = category_key(item.name)
            keep.add(key)
            category = existing.get(key)
            if category is None:
                self.db.add(
                    BusinessCategory(
                        user_id=user.id,
                        name=item.name,
                        name_key=key,
                        description=item.description,
                        position=position,
                    )
                )
            else:
                category.name = item.name
                category.description = item.description
                category.position = position

        await self.categories.delete_categories([c.id for key, c in existing.items() if key not in keep])

    async def _replace_label_mappings(self, user: User, step: LabelMappingStep) -> None:
        by_key = await self.categories.resolve_names(user, [m.category_name for m in step.mappings])

        await self.db.execute(delete(LabelMapping).where(LabelMapping.user_id == user.id))
        for item in step.mappings:
            self.db.add(
                LabelMapping(
                    user_id=user.id,
                    category_id=by_key[category_key(item.category_name)].id,
                    mailbox_label_name=item.mailbox_label_name,
                    mailbox_label_id=item.mailbox_label_id,
                )
            )

    async def _replace_team_members(self, user: User, step: TeamSetupStep) -> None:
        if step.skipped:
            await self.db.execute(delete(TeamMember).where(TeamMember.user_id == user.id))
            return

        by_key = await self.categories.resolve_names(
            user, [m.category_name for m in step.team_members if m.category_name]
        )
        await self.db.execute(delete(TeamMember).where(TeamMember.user_id == user.id))

        for position, item in enumerate(step.team_members):
            category = by_key[category_key(item.category_name)] if item.category_name else None
            self.db.add(
                TeamMember(
                    user_id=user.id,
                    name=item.name,
                    email=item.email,
                    email_key=item.email.lower(),
                    category_id=category.id if category else None,
                    notification_enabled=item.notification_enabled,
                    position=position,
                )
            )

    async def record_provider(self, user: User, provider: str) -> None:
        """Set the provider after a successful OAuth connection."""
        state = await self.get_state(user)
        state.provider = provider
        await self.db.flush()

    async def complete(self, user: User) -> Tuple[OnboardingStatus, WorkflowDeployment]:
        """
        Mark onboarding complete and hand off to the workflow engine once.

        Raises:
            ValidationError: No categories configured
        """
        if await self.categories.count(user) == 0:
            raise ValidationError(
                "Add at least one business category before activating",
                code="NO_CATEGORIES",
            )

        state = await self.get_state(user)
        if not state.completed:
            state.completed = True
            state.completed_at = datetime.utcnow()

        deployment = await self._get_or_create_deployment(user)

        # Only one caller can move the row from pending/failed to queued
        claimed = await self.db.execute(
            update(WorkflowDeployment)
            .where(
                WorkflowDeployment.id == deployment.id,
                WorkflowDeployment.status.in_(DISPATCHABLE_STATUSES),
            )
            .values(status=DEPLOYMENT_QUEUED, last_error=None, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        # The worker reads committed rows, so commit before enqueueing
        await self.db.commit()

        if claimed.rowcount == 1:
            try:
                self._dispatch(str(user.id))
                logger.info(
                    f"Workflow deployment queued for user {user.id}",
                    extra={"user_id": str(user.id)},
                )
            except Exception as e:
                await self.db.execute(
                    update(WorkflowDeployment)
                    .where(WorkflowDeployment.id == deployment.id)
                    .values(status=DEPLOYMENT_FAILED, last_error=f"dispatch failed: {type(e).__name__}")
                    .execution_options(synchronize_session=False)
                )
                await self.db.commit()
                capture_business_error(e, {"user_id": str(user.id), "operation": "dispatch_workflow"})
        else:
            logger.info(
                f"Onboarding already handed off for user {user.id} ({deployment.status})",
                extra={"user_id": str(user.id)},
            )

        await self.db.refresh(deployment)
        return await self.get_status(user), deployment

    async def _get_or_create_deployment(self, user: User) -> WorkflowDeployment:
        result = await self.db.execute(
            select(WorkflowDeployment).where(WorkflowDeployment.user_id == user.id)
        )
        deployment = result.scalar_one_or_none()
        if deployment is not None:
            return deployment

        deployment = WorkflowDeployment(user_id=user.id, status=DEPLOYMENT_PENDING)
        self.db.add(deployment)
        await self.db.flush()
        return deployment
