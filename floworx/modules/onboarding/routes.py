"""
Onboarding routes - wizard state, steps, categories and activation.

Endpoints:
- GET /api/onboarding/status - Current state with nextStep
- POST /api/onboarding/step/{step_name} - Save one step's slice
- POST /api/auth/complete-onboarding - Activate (hand off to workflow engine)
- POST /api/onboarding/complete - Same as above
- GET /api/onboarding/categories - Categories in insertion order
- POST /api/onboarding/categories - Add a category (409 on duplicate)
- DELETE /api/onboarding/categories/{name}?cascade= - Remove a category
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from floworx.core.database import get_db
from floworx.models import User
from floworx.modules.auth.dependencies import get_current_user
from floworx.modules.onboarding.categories import CategoryService
from floworx.modules.onboarding.store import CategoryView, OnboardingStore

router = APIRouter(tags=["onboarding"])


class CategoryCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)


def get_onboarding_store(db: AsyncSession = Depends(get_db)) -> OnboardingStore:
    return OnboardingStore(db)


@router.get("/api/onboarding/status")
async def onboarding_status(
    user: User = Depends(get_current_user),
    store: OnboardingStore = Depends(get_onboarding_store),
):
    status = await store.get_status(user)
    return {"success": True, "data": status.to_response()}


@router.post("/api/onboarding/step/{step_name}")
async def save_step(
    step_name: str,
    payload: Dict[str, Any] = Body(...),
    user: User = Depends(get_current_user),
    store: OnboardingStore = Depends(get_onboarding_store),
):
    """
    Save a wizard step.

    Step names: email-provider, business-type, business-categories,
    label-mapping, team-setup. Re-submitting a step replaces its data.
    """
    status = await store.set_step(user, step_name, payload)
    return {"success": True, "step": step_name, "data": status.to_response()}


async def _complete(user: User, store: OnboardingStore) -> dict:
    status, deployment = await store.complete(user)
    return {
        "success": True,
        "message": "Onboarding completed",
        "data": status.to_response(),
        "workflow": {"status": deployment.status, "externalId": deployment.external_id},
    }


@router.post("/api/auth/complete-onboarding")
async def complete_onboarding(
    user: User = Depends(get_current_user),
    store: OnboardingStore = Depends(get_onboarding_store),
):
    """Activate onboarding. 400 if no categories exist; safe to call twice."""
    return await _complete(user, store)


@router.post("/api/onboarding/complete")
async def complete_onboarding_alias(
    user: User = Depends(get_current_user),
    store: OnboardingStore = Depends(get_onboarding_store),
):
    return await _complete(user, store)


@router.get("/api/onboarding/categories")
async def list_categories(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    categories = await CategoryService(db).list_categories(user)
    return {
        "success": True,
        "categories": [
            CategoryView(name=c.name, description=c.description).model_dump(by_alias=True)
            for c in categories
        ],
    }


@router.post("/api/onboarding/categories", status_code=201)
async def add_category(
    payload: CategoryCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    category = await CategoryService(db).add_category(user, payload.name, payload.description)
    return {
        "success": True,
        "category": CategoryView(name=category.name, description=category.description).model_dump(by_alias=True),
    }


@router.delete("/api/onboarding/categories/{name}")
async def remove_category(
    name: str,
    cascade: bool = Query(False, description="Also remove label mappings and team assignments"),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """409 naming the dependents if the category is in use and cascade is false."""
    await CategoryService(db).remove_category(user, name, cascade=cascade)
    return {"success": True, "message": f"Category '{name}' removed"}
