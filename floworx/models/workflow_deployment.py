"""
WorkflowDeployment model - the single hand-off to the workflow engine.

One row per user. The unique user_id is what makes onboarding completion
idempotent: repeated completes find the existing row and do not dispatch
again once it is queued or deployed.
"""

import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime, ForeignKey, Integer, Text, Uuid

from floworx.core.database import Base

# Lifecycle: pending -> queued -> deployed | skipped | failed (failed may be re-queued)
DEPLOYMENT_PENDING = "pending"
DEPLOYMENT_QUEUED = "queued"
DEPLOYMENT_DEPLOYED = "deployed"
DEPLOYMENT_SKIPPED = "skipped"
DEPLOYMENT_FAILED = "failed"

DISPATCHABLE_STATUSES = (DEPLOYMENT_PENDING, DEPLOYMENT_FAILED)


class WorkflowDeployment(Base):
    """Tracks the workflow deployment requested when onboarding completes."""

    __tablename__ = "workflow_deployments"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False, index=True
    )

    status = Column(String(20), nullable=False, default=DEPLOYMENT_PENDING)
    external_id = Column(String(255), nullable=True)  # Workflow id returned by the engine
    last_error = Column(Text, nullable=True)
    attempts = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    deployed_at = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<WorkflowDeployment user={self.user_id} status={self.status}>"
