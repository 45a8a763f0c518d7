"""
Celery tasks for the workflow engine hand-off.

Tasks:
- deploy_onboarding_workflow: Send a completed onboarding configuration to
  the workflow engine and record the outcome on WorkflowDeployment
"""

import logging
import uuid
from datetime import datetime
from typing import Optional

import httpx
from sqlalchemy import select, update

from floworx.core.celery_app import celery_app
from floworx.core.celery_utils import run_async_task
from floworx.core.config import settings
from floworx.core.database import AsyncSessionLocal
from floworx.models import User, WorkflowDeployment
from floworx.models.workflow_deployment import (
    DEPLOYMENT_DEPLOYED,
    DEPLOYMENT_FAILED,
    DEPLOYMENT_QUEUED,
    DEPLOYMENT_SKIPPED,
)
from floworx.modules.onboarding.store import OnboardingStore

logger = logging.getLogger(__name__)

MAX_RETRIES = 5


class WorkflowEngineError(Exception):
    """Workflow engine rejected the deployment or could not be reached."""


async def post_snapshot(snapshot: dict, transport: Optional[httpx.AsyncBaseTransport] = None) -> Optional[str]:
    """
    POST a configuration snapshot to the workflow engine.

    Returns:
        Workflow id assigned by the engine (None if it did not return one)

    Raises:
        WorkflowEngineError: Timeout, connection failure or non-2xx response
    """
    headers = {}
    if settings.WORKFLOW_ENGINE_API_KEY:
        headers["Authorization"] = f"Bearer {settings.WORKFLOW_ENGINE_API_KEY}"

    url = f"{settings.WORKFLOW_ENGINE_URL.rstrip('/')}/workflows"
    try:
        async with httpx.AsyncClient(
            timeout=settings.WORKFLOW_ENGINE_TIMEOUT_SECONDS,
            transport=transport,
        ) as client:
            response = await client.post(url, json=snapshot, headers=headers)
            response.raise_for_status()
    except httpx.TimeoutException as e:
        raise WorkflowEngineError("Workflow engine timed out") from e
    except httpx.HTTPStatusError as e:
        raise WorkflowEngineError(f"Workflow engine returned {e.response.status_code}") from e
    except httpx.HTTPError as e:
        raise WorkflowEngineError(f"Workflow engine unreachable: {type(e).__name__}") from e

    body = response.json() if response.content else {}
    external_id = body.get("id") or body.get("workflowId")
    return str(external_id) if external_id is not None else None


async def deploy_workflow(
    user_id: str,
    final_attempt: bool = True,
    session_factory=None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> dict:
    """
    Deploy one user's onboarding configuration.

    A deployment that is already deployed is left alone, so redelivered
    tasks are harmless. On failure the error is recorded; the status only
    becomes failed on the final attempt, which lets the next onboarding
    completion dispatch again.

    Raises:
        WorkflowEngineError: If the engine call failed
    """
    session_factory = session_factory or AsyncSessionLocal

    async with session_factory() as session:
        result = await session.execute(
            select(WorkflowDeployment).where(WorkflowDeployment.user_id == uuid.UUID(user_id))
        )
        deployment = result.scalar_one_or_none()
        if deployment is None:
            logger.warning(f"No workflow deployment for user {user_id}", extra={"user_id": user_id})
            return {"status": "missing", "user_id": user_id}

        if deployment.status == DEPLOYMENT_DEPLOYED:
            logger.info(f"Workflow already deployed for user {user_id}", extra={"user_id": user_id})
            return {"status": DEPLOYMENT_DEPLOYED, "external_id": deployment.external_id}

        if not settings.WORKFLOW_ENGINE_URL:
            deployment.status = DEPLOYMENT_SKIPPED
            deployment.last_error = None
            await session.commit()
            logger.info(
                f"No workflow engine configured; deployment skipped for user {user_id}",
                extra={"user_id": user_id},
            )
            return {"status": DEPLOYMENT_SKIPPED}

        user = await session.get(User, uuid.UUID(user_id))
        status = await OnboardingStore(session).get_status(user)
        snapshot = {
            "source": settings.APP_NAME,
            "user": {"id": str(user.id), "email": user.email, "companyName": user.company_name},
            "onboarding": status.to_response(),
        }

        deployment.attempts = (deployment.attempts or 0) + 1
        try:
            external_id = await post_snapshot(snapshot, transport=transport)
        except WorkflowEngineError as e:
            deployment.last_error = str(e)
            if final_attempt:
                deployment.status = DEPLOYMENT_FAILED
            await session.commit()
            raise

        deployment.status = DEPLOYMENT_DEPLOYED
        deployment.external_id = external_id
        deployment.deployed_at = datetime.utcnow()
        deployment.last_error = None
        await session.commit()

        logger.info(
            f"Workflow deployed for user {user_id}",
            extra={"user_id": user_id, "external_id": external_id, "attempts": deployment.attempts},
        )
        return {"status": DEPLOYMENT_DEPLOYED, "external_id": external_id}


async def mark_deployment_failed(user_id: str, error: str, session_factory=None) -> bool:
    """
    Move a queued deployment to failed after an unexpected task error.

    Returns:
        True if a queued row was updated
    """
    session_factory = session_factory or AsyncSessionLocal

    async with session_factory() as session:
        result = await session.execute(
            update(WorkflowDeployment)
            .where(
                WorkflowDeployment.user_id == uuid.UUID(user_id),
                WorkflowDeployment.status == DEPLOYMENT_QUEUED,
            )
            .values(status=DEPLOYMENT_FAILED, last_error=error[:1000], updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        await session.commit()
        return result.rowcount == 1


@celery_app.task(
    name="floworx.tasks.workflows.deploy_onboarding_workflow",
    bind=True,
    max_retries=MAX_RETRIES,
    default_retry_delay=60,
)
def deploy_onboarding_workflow(self, user_id: str):
    """
    Hand a completed onboarding configuration to the workflow engine.

    Enqueued by OnboardingStore.complete(). Retries with exponential backoff
    (60s, 120s, 240s, ...) while the engine is failing. Any other error is not
    retried: the deployment is marked failed so the next completion can
    dispatch again.
    """
    from floworx.core.sentry import capture_business_error

    final_attempt = self.request.retries >= MAX_RETRIES
    try:
        return run_async_task(deploy_workflow(user_id, final_attempt=final_attempt))
    except WorkflowEngineError as e:
        logger.error(
            f"Workflow deployment failed for user {user_id}: {e}",
            extra={"user_id": user_id, "retry_count": self.request.retries},
        )

        capture_business_error(e, context={
            "user_id": user_id,
            "operation": "deploy_onboarding_workflow",
            "retry_count": self.request.retries,
        })

        if final_attempt:
            raise
        raise self.retry(exc=e, countdown=60 * (2 ** self.request.retries))
    except Exception as e:
        logger.exception(
            f"Workflow deployment crashed for user {user_id}: {type(e).__name__}",
            extra={"user_id": user_id, "retry_count": self.request.retries},
        )
        capture_business_error(e, context={
            "user_id": user_id,
            "operation": "deploy_onboarding_workflow",
            "retry_count": self.request.retries,
        })

        try:
            run_async_task(mark_deployment_failed(user_id, f"{type(e).__name__}: {e}"))
        except Exception as mark_error:
            logger.error(
                f"Could not mark deployment failed for user {user_id}: {type(mark_error).__name__}",
                extra={"user_id": user_id},
            )
        raise
