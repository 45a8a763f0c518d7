"""Request/response models for the credential layer.

JSON bodies use camelCase (frontend contract); snake_case is accepted too.
Format and strength rules are enforced in AuthService, so these models only
check presence and types.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RegisterRequest(CamelModel):
    email: str = Field(max_length=255)
    password: str = Field(max_length=128)
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    company_name: Optional[str] = Field(default=None, max_length=255)

    @field_validator("first_name", "last_name", "company_name")
    @classmethod
    def strip_names(cls, v):
        """Trim whitespace; names must not be blank."""
        if v is None:
            return v
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class LoginRequest(CamelModel):
    email: str = Field(max_length=255)
    password: str = Field(max_length=128)


class ForgotPasswordRequest(CamelModel):
    email: str = Field(max_length=255)


class ResetPasswordRequest(CamelModel):
    token: str = Field(min_length=1, max_length=256)
    new_password: str = Field(max_length=128)


class DeleteAccountRequest(CamelModel):
    password: str = Field(max_length=128)


class UserOut(CamelModel):
    id: UUID
    email: str
    first_name: str
    last_name: str
    company_name: Optional[str] = None
    email_verified: bool
    created_at: datetime

    @classmethod
    def from_user(cls, user) -> dict:
        return cls(
            id=user.id,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            company_name=user.company_name,
            email_verified=user.email_verified,
            created_at=user.created_at,
        ).model_dump(by_alias=True, mode="json")
