"""
Security utilities for token encryption, session JWTs, password hashing and
password reset tokens.

CRITICAL SECURITY REQUIREMENTS:
1. NEVER log tokens (session JWTs, OAuth tokens, reset tokens) or passwords
2. ALWAYS encrypt OAuth tokens before database storage
3. Reset tokens are stored as SHA-256 hashes only; the raw value lives in the email link
4. ALWAYS use parameterized queries (SQLAlchemy ORM handles this)
"""

import hashlib
import re
import secrets
from datetime import datetime, timedelta
from typing import Optional
from cryptography.fernet import Fernet
from jose import jwt, JWTError, ExpiredSignatureError
from passlib.context import CryptContext

from floworx.core.config import settings

MIN_PASSWORD_LENGTH = 8

# Shared by registration and password reset
PASSWORD_REQUIREMENTS = {
    "minLength": MIN_PASSWORD_LENGTH,
    "requireUppercase": True,
    "requireLowercase": True,
    "requireNumbers": True,
    "requireSpecialChars": False,
}


class TokenEncryption:
    """
    Symmetric encryption for OAuth tokens using Fernet (AES-128-CBC + HMAC).
    """

    def __init__(self, encryption_key: str):
        """
        Initialize with encryption key.

        Key must be 44-character base64-encoded string.
        Generate with: Fernet.generate_key().decode()
        """
        self._fernet = Fernet(encryption_key.encode())

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt plaintext string.

        Returns:
            Base64-encoded encrypted string (safe for database storage)
        """
        if not plaintext:
            raise ValueError("Cannot encrypt empty string")

        encrypted_bytes = self._fernet.encrypt(plaintext.encode())
        return encrypted_bytes.decode()

    def decrypt(self, ciphertext: str) -> str:
        """
        Decrypt ciphertext string.

        Raises:
            cryptography.fernet.InvalidToken: If decryption fails
        """
        if not ciphertext:
            raise ValueError("Cannot decrypt empty string")

        decrypted_bytes = self._fernet.decrypt(ciphertext.encode())
        return decrypted_bytes.decode()


# Global encryption instance
token_encryptor = TokenEncryption(settings.ENCRYPTION_KEY)


def encrypt_token(token: str) -> str:
    """
    Encrypt OAuth token for database storage.

    Usage:
        mailbox.encrypted_access_token = encrypt_token(tokens["access_token"])
    """
    return token_encryptor.encrypt(token)


def decrypt_token(encrypted_token: str) -> str:
    """
    Decrypt OAuth token from database.

    WARNING: Never log the decrypted token!
    """
    return token_encryptor.decrypt(encrypted_token)


# Password hashing

pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=settings.BCRYPT_ROUNDS,
)


def hash_password(password: str) -> str:
    """Hash a password with a per-password salt (bcrypt)."""
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    """Check a password against a stored hash. Missing or corrupt hashes never match."""
    if not password_hash:
        return False
    try:
        return pwd_context.verify(password, password_hash)
    except ValueError:
        return False


def password_strength_errors(password: str) -> list[str]:
    """
    List the requirements a new password fails.

    Returns:
        Empty list if the password is strong enough
    """
    errors = []
    if len(password) < MIN_PASSWORD_LENGTH:
        errors.append(f"at least {MIN_PASSWORD_LENGTH} characters")
    if not re.search(r"[A-Z]", password):
        errors.append("an uppercase letter")
    if not re.search(r"[a-z]", password):
        errors.append("a lowercase letter")
    if not re.search(r"\d", password):
        errors.append("a number")
    return errors


# Session tokens

class SessionTokenError(Exception):
    """Session token is malformed, has a bad signature or has expired."""

    def __init__(self, message: str, expired: bool = False):
        super().__init__(message)
        self.expired = expired


def create_access_token(user_id: str, email: str, expires_minutes: Optional[int] = None) -> str:
    """
    Create signed session JWT.

    Args:
        user_id: User UUID
        email: User email (informational claim)
        expires_minutes: Override for ACCESS_TOKEN_EXPIRE_MINUTES

    Returns:
        JWT token string

    Usage:
        token = create_access_token(str(user.id), user.email)
    """
    now = datetime.utcnow()
    minutes = expires_minutes if expires_minutes is not None else settings.ACCESS_TOKEN_EXPIRE_MINUTES
    payload = {
        "sub": str(user_id),
        "email": email,
        "type": "access",
        "iat": now,
        "exp": now + timedelta(minutes=minutes),
    }
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> dict:
    """
    Verify signature and expiry of a session JWT.

    Returns:
        Decoded payload dict

    Raises:
        SessionTokenError: If token is invalid or expired
    """
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except ExpiredSignatureError as e:
        raise SessionTokenError("Token expired", expired=True) from e
    except JWTError as e:
        raise SessionTokenError("Invalid token") from e

    if payload.get("type") != "access" or not payload.get("sub"):
        raise SessionTokenError("Invalid token")
    return payload


# Password reset tokens

def generate_reset_token() -> str:
    """
    Generate single-use password reset token.

    Returns:
        43-character URL-safe string (32 random bytes)
    """
    return secrets.token_urlsafe(32)


def hash_reset_token(token: str) -> str:
    """Hash reset token for storage and lookup."""
    return hashlib.sha256(token.encode()).hexdigest()


def generate_state_token() -> str:
    """
    Generate secure random state token for OAuth flow (CSRF protection).

    Usage:
        state = generate_state_token()
        redis.setex(f"oauth_state:{state}", 600, user_id)  # 10 min expiry
    """
    return secrets.token_hex(32)

