"""
Unit tests for onboarding step payload validation.

Run tests:
    pytest tests/unit/test_step_payloads.py -v
"""

import pytest

from floworx.core.errors import ValidationError
from floworx.modules.onboarding.steps import (
    MAX_CATEGORIES,
    BusinessCategoriesStep,
    EmailProviderStep,
    LabelMappingStep,
    TeamSetupStep,
    parse_step_payload,
)


class TestStepDispatch:
    """Test model selection by step name."""

    def test_unknown_step(self):
        """Unknown step names list the valid ones."""
        with pytest.raises(ValidationError) as exc_info:
            parse_step_payload("billing", {})

        assert exc_info.value.code == "INVALID_STEP"
        assert "email-provider" in exc_info.value.extra["validSteps"]

    def test_non_object_payload(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_step_payload("email-provider", ["gmail"])
        assert exc_info.value.code == "INVALID_STEP_DATA"

    def test_already_parsed_payload_passes_through(self):
        step = EmailProviderStep(provider="gmail")
        assert parse_step_payload("email-provider", step) is step


class TestEmailProviderStep:
    def test_accepts_known_providers(self):
        assert parse_step_payload("email-provider", {"provider": "outlook"}).provider == "outlook"

    def test_rejects_unknown_provider(self):
        """Only gmail and outlook are valid."""
        with pytest.raises(ValidationError) as exc_info:
            parse_step_payload("email-provider", {"provider": "yahoo"})

        assert exc_info.value.code == "INVALID_STEP_DATA"
        assert exc_info.value.message.startswith("provider")


class TestBusinessTypeStep:
    def test_camel_case_field(self):
        """Payloads use camelCase keys."""
        step = parse_step_payload("business-type", {"businessTypeId": 3})
        assert step.business_type_id == 3

    def test_rejects_non_positive_id(self):
        with pytest.raises(ValidationError):
            parse_step_payload("business-type", {"businessTypeId": 0})


class TestBusinessCategoriesStep:
    """Test category list validation."""

    def test_strips_names(self):
        step = parse_step_payload("business-categories", {"categories": [{"name": "  Sales  "}]})
        assert isinstance(step, BusinessCategoriesStep)
        assert step.categories[0].name == "Sales"

    def test_duplicate_names_case_insensitive(self):
        """'Sales' and 'sales' are the same category."""
        with pytest.raises(ValidationError) as exc_info:
            parse_step_payload(
                "business-categories", {"categories": [{"name": "Sales"}, {"name": "sales"}]}
            )

        assert "Duplicate category name" in exc_info.value.message

    def test_blank_name_rejected(self):
        with pytest.raises(ValidationError):
            parse_step_payload("business-categories", {"categories": [{"name": "   "}]})

    def test_empty_list_rejected(self):
        with pytest.raises(ValidationError):
            parse_step_payload("business-categories", {"categories": []})

    def test_too_many_categories(self):
        categories = [{"name": f"Category {i}"} for i in range(MAX_CATEGORIES + 1)]
        with pytest.raises(ValidationError):
            parse_step_payload("business-categories", {"categories": categories})


class TestLabelMappingStep:
    """Test label mapping validation."""

    def test_valid_mappings(self):
        step = parse_step_payload(
            "label-mapping",
            {"mappings": [{"categoryName": "Sales", "mailboxLabelName": "FloWorx/Sales"}]},
        )

        assert isinstance(step, LabelMappingStep)
        assert step.mappings[0].mailbox_label_name == "FloWorx/Sales"
        assert step.mappings[0].mailbox_label_id is None

    def test_category_mapped_twice(self):
        """A category can only be mapped to one label."""
        with pytest.raises(ValidationError) as exc_info:
            parse_step_payload(
                "label-mapping",
                {
                    "mappings": [
                        {"categoryName": "Sales", "mailboxLabelName": "A"},
                        {"categoryName": "SALES", "mailboxLabelName": "B"},
                    ]
                },
            )

        assert "mapped more than once" in exc_info.value.message

    def test_empty_mappings_allowed(self):
        assert parse_step_payload("label-mapping", {}).mappings == []


class TestTeamSetupStep:
    """Test team member validation."""

    def test_normalizes_email_and_category(self):
        """Emails are lowercased, blank categories become None."""
        step = parse_step_payload(
            "team-setup",
            {"teamMembers": [{"name": "Sam", "email": " Sam@HotTubPros.com ", "categoryName": "  "}]},
        )

        assert isinstance(step, TeamSetupStep)
        member = step.team_members[0]
        assert member.email == "sam@hottubpros.com"
        assert member.category_name is None
        assert member.notification_enabled is True

    def test_invalid_email(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_step_payload("team-setup", {"teamMembers": [{"name": "Sam", "email": "sam"}]})
        assert "valid email" in exc_info.value.message

    def test_duplicate_emails(self):
        members = [
            {"name": "Sam", "email": "sam@hottubpros.com"},
            {"name": "Sammy", "email": "SAM@hottubpros.com"},
        ]
        with pytest.raises(ValidationError):
            parse_step_payload("team-setup", {"teamMembers": members})

    def test_skipped_team(self):
        step = parse_step_payload("team-setup", {"skipped": True})
        assert step.skipped is True
        assert step.team_members == []
