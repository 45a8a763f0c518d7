"""Onboarding-completed event, consumed by the workflow deployment task."""

import logging

logger = logging.getLogger(__name__)


def dispatch_onboarding_completed(user_id: str):
    """
    Enqueue workflow deployment for a user who just completed onboarding.

    Raises:
        kombu/redis errors if the broker is unreachable (caller records the
        deployment as failed so the next complete() retries)
    """
    from floworx.tasks.workflows import deploy_onboarding_workflow

    result = deploy_onboarding_workflow.delay(user_id)
    logger.info(
        f"Dispatched onboarding-completed for user {user_id}",
        extra={"user_id": user_id, "task_id": result.id},
    )
    return result
