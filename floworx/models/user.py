"""
User model - represents registered FloWorx accounts.

Owned by the credential layer (floworx.modules.auth). Everything else a user
creates references users.id with ON DELETE CASCADE.
"""

import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Boolean, Uuid

from floworx.core.database import Base


class User(Base):
    """
    Application user.

    email is stored lower-cased; password_hash is a salted bcrypt hash.
    email_verified is informational only and never gates login.
    """

    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)

    # Profile
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    company_name = Column(String(255), nullable=True)

    # Status
    email_verified = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<User {self.email}>"
