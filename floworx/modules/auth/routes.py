"""
Authentication routes - registration, login, session and password reset.

Endpoints:
- POST /api/auth/register - Create account (201)
- POST /api/auth/login - Exchange credentials for a session token
- GET /api/auth/me - Current user
- GET /api/auth/password-requirements - Rules the reset form should show
- POST /api/auth/forgot-password - Email a reset link (always 200)
- DELETE /api/auth/account - Delete account and all owned data
- POST /api/password-reset/reset - Set new password with a reset token
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from floworx.core.database import get_db
from floworx.core.middleware import (
    LOGIN_RATE_LIMIT,
    PASSWORD_RESET_RATE_LIMIT,
    REGISTER_RATE_LIMIT,
    limiter,
)
from floworx.core.security import PASSWORD_REQUIREMENTS
from floworx.models import User
from floworx.modules.auth.dependencies import get_current_user
from floworx.modules.auth.schemas import (
    DeleteAccountRequest,
    ForgotPasswordRequest,
    LoginRequest,
    RegisterRequest,
    ResetPasswordRequest,
    UserOut,
)
from floworx.modules.auth.service import AuthService

router = APIRouter(prefix="/api/auth", tags=["authentication"])
password_reset_router = APIRouter(prefix="/api/password-reset", tags=["authentication"])

FORGOT_PASSWORD_MESSAGE = "If an account with that email exists, we've sent a password reset link."


@router.post("/register", status_code=201)
@limiter.limit(REGISTER_RATE_LIMIT)
async def register(
    request: Request,
    payload: RegisterRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    Register a new account.

    Returns 201 with the user and a session token. 400 for malformed email
    or short password, 409 if the email is already registered.
    """
    result = await AuthService(db).register(
        email=payload.email,
        password=payload.password,
        first_name=payload.first_name,
        last_name=payload.last_name,
        company_name=payload.company_name,
    )
    return {
        "success": True,
        "user": UserOut.from_user(result.user),
        "token": result.token,
        "requiresVerification": False,
    }


@router.post("/login")
@limiter.limit(LOGIN_RATE_LIMIT)
async def login(
    request: Request,
    payload: LoginRequest,
    db: AsyncSession = Depends(get_db),
):
    """Exchange email and password for a session token (401 on bad credentials)."""
    result = await AuthService(db).login(payload.email, payload.password)
    return {
        "success": True,
        "user": UserOut.from_user(result.user),
        "token": result.token,
    }


@router.get("/me")
async def me(user: User = Depends(get_current_user)):
    return {"success": True, "user": UserOut.from_user(user)}


@router.get("/password-requirements")
async def password_requirements():
    return {"success": True, "requirements": PASSWORD_REQUIREMENTS}


@router.post("/forgot-password")
@limiter.limit(PASSWORD_RESET_RATE_LIMIT)
async def forgot_password(
    request: Request,
    payload: ForgotPasswordRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    Request a password reset email.

    Returns the same 200 response whether or not the account exists.
    Only a malformed address is rejected (400).
    """
    await AuthService(db).request_password_reset(payload.email)
    return {"success": True, "message": FORGOT_PASSWORD_MESSAGE}


@router.delete("/account")
async def delete_account(
    payload: DeleteAccountRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Permanently delete the account, its onboarding data and mailbox connections."""
    await AuthService(db).delete_account(user, payload.password)
    return {"success": True, "message": "Account deleted"}


@password_reset_router.post("/reset")
@limiter.limit(PASSWORD_RESET_RATE_LIMIT)
async def reset_password(
    request: Request,
    payload: ResetPasswordRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    Set a new password with a reset token.

    400 with code WEAK_PASSWORD, INVALID_TOKEN or TOKEN_EXPIRED on failure.
    """
    await AuthService(db).reset_password(payload.token, payload.new_password)
    return {"success": True, "message": "Password has been reset. You can now log in."}
