"""
Label mapping suggestions.

Matches the user's business categories against the folders found by
discovery, so the label-mapping step can offer a starting point:

- reuse: an existing folder already carries the category's name, either as
  its full path or as its last segment (exact first, then ignoring case)
- create: nothing matches; a new label under LABEL_ROOT is suggested

Each folder is offered to at most one category.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from floworx.modules.mailbox.base import MailboxFolder

LABEL_ROOT = "FloWorx"

MATCH_EXACT = "exact"
MATCH_CASE_INSENSITIVE = "case_insensitive"


def default_label_name(category_name: str) -> str:
    return f"{LABEL_ROOT}/{category_name.strip()}"


def _match(folder: MailboxFolder, category_name: str) -> Optional[str]:
    wanted = {category_name.strip(), default_label_name(category_name)}
    if folder.full_name in wanted or folder.name == category_name.strip():
        return MATCH_EXACT

    folded = {name.casefold() for name in wanted}
    if folder.full_name.casefold() in folded or folder.name.casefold() == category_name.strip().casefold():
        return MATCH_CASE_INSENSITIVE
    return None


def _rank(folder: MailboxFolder, match: str):
    # Exact before case-insensitive, then labels we created, then shallow paths
    under_root = bool(folder.path) and folder.path[0].casefold() == LABEL_ROOT.casefold()
    return (match != MATCH_EXACT, not under_root, len(folder.path), folder.full_name)


def suggest_mapping(category_names: Sequence[str], folders: List[MailboxFolder]) -> Dict[str, Any]:
    """
    Suggest a label for every category.

    Returns:
        {"suggestions": {"reuse": [...], "create": [...]},
         "suggestedMapping": [{"categoryName", "mailboxLabelName", "mailboxLabelId", "action"}],
         "analysis": {...}}
    """
    taken = set()
    reuse, create, mapping = [], [], []

    for category_name in category_names:
        candidates = []
        for folder in folders:
            if folder.id in taken:
                continue
            match = _match(folder, category_name)
            if match:
                candidates.append((_rank(folder, match), folder, match))

        if candidates:
            _, folder, match = min(candidates, key=lambda c: c[0])
            taken.add(folder.id)
            reuse.append({
                "categoryName": category_name,
                "folderId": folder.id,
                "mailboxLabelName": folder.full_name,
                "match": match,
            })
            mapping.append({
                "categoryName": category_name,
                "mailboxLabelName": folder.full_name,
                "mailboxLabelId": folder.id,
                "action": "reuse",
            })
        else:
            label_name = default_label_name(category_name)
            create.append({"categoryName": category_name, "mailboxLabelName": label_name})
            mapping.append({
                "categoryName": category_name,
                "mailboxLabelName": label_name,
                "mailboxLabelId": None,
                "action": "create",
            })

    return {
        "suggestions": {"reuse": reuse, "create": create},
        "suggestedMapping": mapping,
        "analysis": {
            "existingCount": len(folders),
            "categoryCount": len(category_names),
            "matchedCount": len(reuse),
            "missingCount": len(create),
            "unmatchedFolderCount": len(folders) - len(taken),
        },
        "analyzedAt": datetime.utcnow().isoformat(),
    }
