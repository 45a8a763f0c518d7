"""
Mailbox model - connected email accounts (OAuth connections).

Each mailbox stores encrypted OAuth tokens used by the mailbox adapters for
label discovery and provisioning.
"""

import uuid
from datetime import datetime, timedelta
from sqlalchemy import Column, String, DateTime, Boolean, ForeignKey, Text, Uuid

from floworx.core.database import Base


class Mailbox(Base):
    """
    Connected email account (Gmail; Outlook connections are not supported yet).

    CRITICAL SECURITY:
    - access_token and refresh_token are ALWAYS encrypted before storage
    - Tokens are NEVER logged
    - Use floworx.core.security.decrypt_token() to decrypt for API calls
    """

    __tablename__ = "mailboxes"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    # Provider info
    provider = Column(String(20), nullable=False)  # 'gmail' | 'outlook'
    email_address = Column(String(255), nullable=False, index=True)

    # Encrypted OAuth tokens (NEVER store plaintext!)
    encrypted_access_token = Column(Text, nullable=False)
    encrypted_refresh_token = Column(Text, nullable=True)
    token_expires_at = Column(DateTime, nullable=True)

    # Status
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    last_used_at = Column(DateTime, default=datetime.utcnow, nullable=True)

    def __repr__(self):
        return f"<Mailbox {self.provider}:{self.email_address}>"

    @property
    def token_expiring(self) -> bool:
        """True when the access token expires within five minutes."""
        if not self.token_expires_at:
            return False
        return self.token_expires_at < datetime.utcnow() + timedelta(minutes=5)
