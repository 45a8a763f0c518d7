"""Validated payloads for each onboarding wizard step.

Every step name has its own model; parse_step_payload() picks the model by
step name so the store never sees an unvalidated blob.
"""

import re
from typing import Any, Dict, List, Literal, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from floworx.core.errors import ValidationError

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

MAX_CATEGORIES = 50
MAX_TEAM_MEMBERS = 100


class StepModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


def _strip_required(value: str) -> str:
    value = (value or "").strip()
    if not value:
        raise ValueError("must not be blank")
    return value


class EmailProviderStep(StepModel):
    provider: Literal["gmail", "outlook"]


class BusinessTypeStep(StepModel):
    business_type_id: int = Field(gt=0)


class CategoryInput(StepModel):
    name: str = Field(max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v):
        return _strip_required(v)


class BusinessCategoriesStep(StepModel):
    categories: List[CategoryInput] = Field(min_length=1, max_length=MAX_CATEGORIES)

    @model_validator(mode="after")
    def unique_names(self):
        """Category names are unique case-insensitively."""
        seen = set()
        for category in self.categories:
            key = category.name.casefold()
            if key in seen:
                raise ValueError(f"Duplicate category name: {category.name}")
            seen.add(key)
        return self


class LabelMappingInput(StepModel):
    category_name: str = Field(max_length=100)
    mailbox_label_name: str = Field(max_length=255)
    mailbox_label_id: Optional[str] = Field(default=None, max_length=255)

    @field_validator("category_name", "mailbox_label_name")
    @classmethod
    def strip_names(cls, v):
        return _strip_required(v)


class LabelMappingStep(StepModel):
    mappings: List[LabelMappingInput] = Field(default_factory=list)

    @model_validator(mode="after")
    def one_mapping_per_category(self):
        seen = set()
        for mapping in self.mappings:
            key = mapping.category_name.casefold()
            if key in seen:
                raise ValueError(f"Category mapped more than once: {mapping.category_name}")
            seen.add(key)
        return self


class TeamMemberInput(StepModel):
    name: str = Field(max_length=200)
    email: str = Field(max_length=255)
    category_name: Optional[str] = Field(default=None, max_length=100)
    notification_enabled: bool = True

    @field_validator("name")
    @classmethod
    def strip_name(cls, v):
        return _strip_required(v)

    @field_validator("email")
    @classmethod
    def valid_email(cls, v):
        v = (v or "").strip().lower()
        if not EMAIL_PATTERN.match(v):
            raise ValueError("must be a valid email address")
        return v

    @field_validator("category_name")
    @classmethod
    def blank_category_is_none(cls, v):
        if v is None:
            return None
        return v.strip() or None


class TeamSetupStep(StepModel):
    team_members: List[TeamMemberInput] = Field(default_factory=list, max_length=MAX_TEAM_MEMBERS)
    skipped: bool = False

    @model_validator(mode="after")
    def unique_emails(self):
        seen = set()
        for member in self.team_members:
            if member.email in seen:
                raise ValueError(f"Duplicate team member email: {member.email}")
            seen.add(member.email)
        return self


StepPayload = Union[
    EmailProviderStep,
    BusinessTypeStep,
    BusinessCategoriesStep,
    LabelMappingStep,
    TeamSetupStep,
]

STEP_PAYLOADS: Dict[str, Type[StepModel]] = {
    "email-provider": EmailProviderStep,
    "business-type": BusinessTypeStep,
    "business-categories": BusinessCategoriesStep,
    "label-mapping": LabelMappingStep,
    "team-setup": TeamSetupStep,
}


def _format_error(error: PydanticValidationError) -> str:
    first = error.errors()[0]
    field = ".".join(str(part) for part in first.get("loc", ()))
    msg = str(first.get("msg", "")).removeprefix("Value error, ")
    return f"{field}: {msg}" if field else msg


def parse_step_payload(step_name: str, data: Any) -> StepPayload:
    """
    Validate raw step data against the model for step_name.

    Raises:
        ValidationError: Unknown step name or invalid payload
    """
    model = STEP_PAYLOADS.get(step_name)
    if model is None:
        raise ValidationError(
            f"Unknown onboarding step: {step_name}",
            code="INVALID_STEP",
            extra={"validSteps": list(STEP_PAYLOADS)},
        )
    if isinstance(data, model):
        return data
    if not isinstance(data, dict):
        raise ValidationError("Step data must be a JSON object", code="INVALID_STEP_DATA")

    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(_format_error(e), code="INVALID_STEP_DATA") from e
