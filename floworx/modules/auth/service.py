"""
Credential & session layer.

Owns the users table: registration, login, stateless session tokens,
password reset, and account deletion.

Email verification is informational only. Registration reports
emailVerified=False and login never checks it; there is no verification
flow wired end-to-end to gate on.
"""

import logging
import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from floworx.core.config import settings
from floworx.core.email_service import send_password_reset_email
from floworx.core.errors import (
    AuthenticationError,
    ConflictError,
    ExpiredTokenError,
    InvalidTokenError,
    ValidationError,
    WeakPasswordError,
)
from floworx.core.security import (
    MIN_PASSWORD_LENGTH,
    SessionTokenError,
    create_access_token,
    decode_access_token,
    generate_reset_token,
    hash_password,
    hash_reset_token,
    password_strength_errors,
    verify_password,
)
from floworx.core.sentry import capture_business_error
from floworx.models import (
    BusinessCategory,
    LabelMapping,
    Mailbox,
    OnboardingState,
    PasswordResetToken,
    TeamMember,
    User,
    WorkflowDeployment,
)

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

ResetEmailSender = Callable[[str, Optional[str], str], Awaitable[bool]]


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def validate_email_format(email: str) -> str:
    """
    Normalize and validate an email address.

    Raises:
        ValidationError: If the address is malformed
    """
    normalized = normalize_email(email)
    if not normalized or not EMAIL_PATTERN.match(normalized):
        raise ValidationError("Please provide a valid email address", code="INVALID_EMAIL")
    return normalized


@dataclass
class AuthResult:
    user: User
    token: str


class AuthService:
    """
    Usage:
        service = AuthService(db)
        result = await service.register("alice@example.com", "Password1!", "Alice", "Smith", "Acme")
        user = await service.verify_token(result.token)
    """

    def __init__(self, db: AsyncSession, send_reset_email: Optional[ResetEmailSender] = None):
        self.db = db
        self._send_reset_email = send_reset_email or send_password_reset_email

    async def _get_user_by_email(self, email: str) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.email == email))
        return result.scalar_one_or_none()

    async def register(
        self,
        email: str,
        password: str,
        first_name: str,
        last_name: str,
        company_name: Optional[str] = None,
    ) -> AuthResult:
        """
        Create an account and issue a session token.

        Raises:
            ValidationError: Malformed email or password shorter than 8 characters
            ConflictError: Email already registered
        """
        email = validate_email_format(email)
        if len(password or "") < MIN_PASSWORD_LENGTH:
            raise ValidationError(
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters long",
                code="INVALID_PASSWORD",
            )

        if await self._get_user_by_email(email):
            raise ConflictError("An account with this email already exists", code="EMAIL_EXISTS")

        user = User(
            id=uuid.uuid4(),
            email=email,
            password_hash=hash_password(password),
            first_name=first_name,
            last_name=last_name,
            company_name=company_name,
            email_verified=False,
        )
        self.db.add(user)
        try:
            await self.db.flush()
        except IntegrityError as e:
            # Lost a race with a concurrent registration for the same email
            await self.db.rollback()
            raise ConflictError("An account with this email already exists", code="EMAIL_EXISTS") from e

        logger.info(f"User registered: {user.id}", extra={"user_id": str(user.id)})
        return AuthResult(user=user, token=create_access_token(str(user.id), user.email))

    async def login(self, email: str, password: str) -> AuthResult:
        """
        Authenticate with email and password.

        Raises:
            AuthenticationError: Unknown email, wrong password or disabled account
        """
        user = await self._get_user_by_email(normalize_email(email))

        if not user or not verify_password(password or "", user.password_hash):
            logger.info("Login failed: bad credentials")
            raise AuthenticationError("Invalid email or password", code="INVALID_CREDENTIALS")

        if not user.is_active:
            raise AuthenticationError("This account has been disabled", code="ACCOUNT_DISABLED")

        logger.info(f"User logged in: {user.id}", extra={"user_id": str(user.id)})
        return AuthResult(user=user, token=create_access_token(str(user.id), user.email))

    async def verify_token(self, token: str) -> User:
        """
        Resolve a session token to an active user.

        Raises:
            AuthenticationError: Bad signature, expired, or user gone/disabled
        """
        try:
            payload = decode_access_token(token)
        except SessionTokenError as e:
            if e.expired:
                raise AuthenticationError("Session expired. Please log in again.", code="TOKEN_EXPIRED") from e
            raise AuthenticationError("Invalid session token", code="INVALID_TOKEN") from e

        try:
            user_id = uuid.UUID(payload["sub"])
        except ValueError as e:
            raise AuthenticationError("Invalid session token", code="INVALID_TOKEN") from e

        user = await self.db.get(User, user_id)
        if not user or not user.is_active:
            raise AuthenticationError("Account not found", code="INVALID_TOKEN")
        return user

    async def request_password_reset(self, email: str) -> None:
        """
        Email a single-use reset link if the account exists.

        Always returns normally for well-formed addresses so callers cannot
        learn whether an account exists. Email delivery failures are
        reported to Sentry, never to the caller.

        Raises:
            ValidationError: Malformed email address
        """
        email = validate_email_format(email)
        user = await self._get_user_by_email(email)
        if not user or not user.is_active:
            logger.info("Password reset requested for unknown or disabled account")
            return

        now = datetime.utcnow()
        await self._invalidate_reset_tokens(user.id, now)

        raw_token = generate_reset_token()
        self.db.add(
            PasswordResetToken(
                user_id=user.id,
                token_hash=hash_reset_token(raw_token),
                expires_at=now + timedelta(minutes=settings.PASSWORD_RESET_TOKEN_TTL_MINUTES),
            )
        )
        await self.db.flush()

        reset_link = f"{settings.FRONTEND_URL}/reset-password?token={raw_token}"
        try:
            sent = await self._send_reset_email(user.email, user.first_name, reset_link)
        except Exception as e:
            capture_business_error(e, {"user_id": str(user.id), "operation": "password_reset_email"})
            return

        if not sent:
            logger.warning(
                f"Password reset email not delivered for user {user.id}",
                extra={"user_id": str(user.id)},
            )
        else:
            logger.info(f"Password reset email sent for user {user.id}", extra={"user_id": str(user.id)})

    async def reset_password(self, token: str, new_password: str) -> User:
        """
        Set a new password using a reset token.

        Raises:
            WeakPasswordError: Password fails strength rules (checked first)
            InvalidTokenError: Unknown token, or token already used
            ExpiredTokenError: Token past its expiry
        """
        problems = password_strength_errors(new_password or "")
        if problems:
            raise WeakPasswordError(f"Password must contain {', '.join(problems)}")

        result = await self.db.execute(
            select(PasswordResetToken).where(PasswordResetToken.token_hash == hash_reset_token(token))
        )
        reset_token = result.scalar_one_or_none()

        if reset_token is None:
            raise InvalidTokenError("Invalid or unknown reset token")
        if reset_token.is_used:
            raise InvalidTokenError("This reset link has already been used")

        now = datetime.utcnow()
        if reset_token.is_expired(now):
            raise ExpiredTokenError("This reset link has expired. Please request a new one.")

        user = await self.db.get(User, reset_token.user_id)
        if not user or not user.is_active:
            raise InvalidTokenError("Invalid or unknown reset token")

        user.password_hash = hash_password(new_password)
        reset_token.used_at = now
        await self.db.flush()
        # Any other outstanding links for this user die with this reset
        await self._invalidate_reset_tokens(user.id, now)

        logger.info(f"Password reset completed for user {user.id}", extra={"user_id": str(user.id)})
        return user

    async def _invalidate_reset_tokens(self, user_id, now: datetime) -> None:
        await self.db.execute(
            update(PasswordResetToken)
            .where(PasswordResetToken.user_id == user_id, PasswordResetToken.used_at.is_(None))
            .values(used_at=now)
        )

    async def delete_account(self, user: User, password: str) -> None:
        """
        Permanently delete the user and everything they own.

        Rows are deleted explicitly, children first, so the result does not
        depend on the database enforcing ON DELETE CASCADE.

        Raises:
            AuthenticationError: Password confirmation does not match
        """
        if not verify_password(password or "", user.password_hash):
            raise AuthenticationError("Password confirmation failed", code="INVALID_CREDENTIALS")

        user_id = user.id
        for model in (
            TeamMember,
            LabelMapping,
            BusinessCategory,
            OnboardingState,
            WorkflowDeployment,
            Mailbox,
            PasswordResetToken,
        ):
            await self.db.execute(delete(model).where(model.user_id == user_id))

        await self.db.delete(user)
        await self.db.flush()

        logger.info(f"Account deleted: {user_id}", extra={"user_id": str(user_id)})
