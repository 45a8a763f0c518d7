"""
Database models package.

Import all models here so Alembic can discover them for migrations.
"""

from floworx.models.user import User
from floworx.models.password_reset_token import PasswordResetToken
from floworx.models.onboarding import (
    OnboardingState,
    BusinessCategory,
    LabelMapping,
    TeamMember,
)
from floworx.models.mailbox import Mailbox
from floworx.models.workflow_deployment import WorkflowDeployment

__all__ = [
    "User",
    "PasswordResetToken",
    "OnboardingState",
    "BusinessCategory",
    "LabelMapping",
    "TeamMember",
    "Mailbox",
    "WorkflowDeployment",
]
