"""
Unit tests for label mapping suggestions.

Tests:
- Exact and case-insensitive reuse of existing labels
- Create suggestions under the FloWorx root
- One folder per category, preference for FloWorx labels

Run tests:
    pytest tests/mailbox/test_suggest.py -v
"""

from floworx.modules.mailbox.base import MailboxFolder
from floworx.modules.mailbox.suggest import (
    MATCH_CASE_INSENSITIVE,
    MATCH_EXACT,
    default_label_name,
    suggest_mapping,
)


def folder(folder_id, *path):
    return MailboxFolder(id=folder_id, name=path[-1], path=list(path))


class TestSuggestMapping:
    """Test reuse/create decisions."""

    def test_exact_match_reused(self):
        result = suggest_mapping(["Sales"], [folder("Label_1", "Sales")])

        assert result["suggestions"]["reuse"] == [
            {"categoryName": "Sales", "folderId": "Label_1", "mailboxLabelName": "Sales", "match": MATCH_EXACT}
        ]
        assert result["suggestions"]["create"] == []

    def test_case_insensitive_match_reused(self):
        result = suggest_mapping(["Service Calls"], [folder("Label_7", "SERVICE CALLS")])

        assert result["suggestions"]["reuse"][0]["match"] == MATCH_CASE_INSENSITIVE
        assert result["suggestedMapping"][0]["mailboxLabelId"] == "Label_7"

    def test_nested_leaf_matches(self):
        """A label's last path segment counts as its name."""
        result = suggest_mapping(["Sales"], [folder("Label_2", "Work", "Sales")])

        assert result["suggestedMapping"][0]["mailboxLabelName"] == "Work/Sales"

    def test_missing_category_suggests_create(self):
        result = suggest_mapping(["Warranty"], [folder("Label_1", "Sales")])

        assert result["suggestions"]["create"] == [
            {"categoryName": "Warranty", "mailboxLabelName": "FloWorx/Warranty"}
        ]
        assert result["suggestedMapping"][0]["action"] == "create"
        assert result["suggestedMapping"][0]["mailboxLabelId"] is None

    def test_partial_names_are_not_reused(self):
        result = suggest_mapping(["Sales"], [folder("Label_1", "Sales Leads 2023")])

        assert result["suggestions"]["reuse"] == []

    def test_prefers_exact_then_floworx_labels(self):
        folders = [
            folder("Label_1", "sales"),
            folder("Label_2", "Old", "Sales"),
            folder("Label_3", "FloWorx", "Sales"),
        ]

        result = suggest_mapping(["Sales"], folders)

        assert result["suggestedMapping"][0]["mailboxLabelId"] == "Label_3"

    def test_folder_reused_once(self):
        """Two categories with the same folded name do not share one label."""
        result = suggest_mapping(["Sales", "SALES"], [folder("Label_1", "Sales")])

        actions = [m["action"] for m in result["suggestedMapping"]]
        assert actions == ["reuse", "create"]

    def test_analysis_counts(self):
        result = suggest_mapping(["Sales", "Billing"], [folder("Label_1", "Sales"), folder("Label_2", "Personal")])

        assert result["analysis"] == {
            "existingCount": 2,
            "categoryCount": 2,
            "matchedCount": 1,
            "missingCount": 1,
            "unmatchedFolderCount": 1,
        }

    def test_no_categories(self):
        result = suggest_mapping([], [folder("Label_1", "Sales")])

        assert result["suggestedMapping"] == []
        assert result["analysis"]["unmatchedFolderCount"] == 1


def test_default_label_name():
    assert default_label_name(" Sales ") == "FloWorx/Sales"
