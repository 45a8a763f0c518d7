"""
Onboarding models - wizard progress and the business configuration it collects.

Tables:
- onboarding_states: one row per user (provider, business type, completion)
- business_categories: the user's categories, unique by case-insensitive name
- label_mappings: category -> mailbox label/folder (by category id)
- team_members: people notified per category (by category id)

Categories are referenced by id, not by name. Deleting a category removes
its label mapping (CASCADE) and clears team members' category (SET NULL);
the API asks for explicit confirmation before doing either.
"""

import uuid
from datetime import datetime
from sqlalchemy import (
    Column,
    String,
    DateTime,
    Boolean,
    ForeignKey,
    Integer,
    Text,
    UniqueConstraint,
    Uuid,
)

from floworx.core.database import Base


class OnboardingState(Base):
    """Per-user wizard progress."""

    __tablename__ = "onboarding_states"

    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)

    provider = Column(String(20), nullable=True)  # 'gmail' | 'outlook'
    business_type_id = Column(Integer, nullable=True)
    team_setup_completed = Column(Boolean, default=False, nullable=False)  # submitted or skipped

    completed = Column(Boolean, default=False, nullable=False)
    completed_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<OnboardingState user={self.user_id} completed={self.completed}>"


class BusinessCategory(Base):
    """A user-defined class of incoming email (e.g. 'Service Calls')."""

    __tablename__ = "business_categories"
    __table_args__ = (
        UniqueConstraint("user_id", "name_key", name="uq_business_categories_user_name"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    name = Column(String(100), nullable=False)  # As entered
    name_key = Column(String(100), nullable=False)  # casefolded, for uniqueness
    description = Column(Text, nullable=True)
    position = Column(Integer, nullable=False, default=0)  # Insertion order

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<BusinessCategory {self.name}>"


class LabelMapping(Base):
    """Maps a category to a concrete mailbox label/folder."""

    __tablename__ = "label_mappings"
    __table_args__ = (
        UniqueConstraint("user_id", "category_id", name="uq_label_mappings_user_category"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    category_id = Column(
        Uuid, ForeignKey("business_categories.id", ondelete="CASCADE"), nullable=False, index=True
    )

    mailbox_label_id = Column(String(255), nullable=True)  # Provider id, unknown until provisioned
    mailbox_label_name = Column(String(255), nullable=False)  # e.g. 'Sales/Inbox'

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<LabelMapping {self.category_id} -> {self.mailbox_label_name}>"


class TeamMember(Base):
    """Team member who gets notified about a category's email."""

    __tablename__ = "team_members"
    __table_args__ = (
        UniqueConstraint("user_id", "email_key", name="uq_team_members_user_email"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    name = Column(String(200), nullable=False)
    email = Column(String(255), nullable=False)
    email_key = Column(String(255), nullable=False)  # lower-cased, for uniqueness
    category_id = Column(
        Uuid, ForeignKey("business_categories.id", ondelete="SET NULL"), nullable=True, index=True
    )
    notification_enabled = Column(Boolean, default=True, nullable=False)
    position = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<TeamMember {self.email}>"
