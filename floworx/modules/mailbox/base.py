"""
Mailbox provider adapter interface.

Every capability returns a tagged ProviderResult instead of raising, so
callers can tell three outcomes apart:

- Implemented(data): the provider answered (data may legitimately be empty)
- NotSupported(provider, operation): this provider cannot do this yet
- Unavailable(error): the provider failed; error.retryable says whether to retry
"""

import abc
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from floworx.core.errors import ProviderError, ProviderNotImplementedError
from floworx.models import User

HEX_COLOR_PATTERN = re.compile(r"^#[0-9A-F]{6}$", re.IGNORECASE)


@dataclass(frozen=True)
class Implemented:
    data: Any
    status: str = "ok"


@dataclass(frozen=True)
class NotSupported:
    provider: str
    operation: str
    status: str = "not_implemented"


@dataclass(frozen=True)
class Unavailable:
    error: ProviderError
    status: str = "error"


ProviderResult = Union[Implemented, NotSupported, Unavailable]


def unwrap(result: ProviderResult) -> Any:
    """
    Return the data of an Implemented result.

    Raises:
        ProviderNotImplementedError: For NotSupported (501)
        ProviderError: For Unavailable (502/503)
    """
    if isinstance(result, Implemented):
        return result.data
    if isinstance(result, NotSupported):
        raise ProviderNotImplementedError(result.provider, result.operation)
    raise result.error


def is_valid_hex_color(color: Optional[str]) -> bool:
    return bool(color) and bool(HEX_COLOR_PATTERN.match(color))


class ProvisionItem(BaseModel):
    """A folder/label (or Outlook category) that should exist in the mailbox."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    path: List[str] = Field(min_length=1, max_length=10)
    color: Optional[str] = None
    type: Literal["folder", "category"] = "folder"

    @field_validator("path")
    @classmethod
    def clean_path(cls, v):
        """Trim segments; empty segments are not allowed."""
        cleaned = [segment.strip() for segment in v]
        if any(not segment for segment in cleaned):
            raise ValueError("path segments must not be blank")
        return cleaned

    @field_validator("color")
    @classmethod
    def valid_color(cls, v):
        if v is not None and not is_valid_hex_color(v):
            raise ValueError("color must be a hex value like #4a86e8")
        return v

    @property
    def name(self) -> str:
        return "/".join(self.path)


class MailboxFolder(BaseModel):
    """A folder/label discovered in the user's mailbox (provider is the source of truth)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    name: str
    path: List[str]
    parent_id: Optional[str] = None
    color: Optional[str] = None
    child_count: int = 0
    type: str = "user"

    @property
    def full_name(self) -> str:
        return "/".join(self.path)

    def to_response(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


def split_path(name: str, separator: str = "/") -> List[str]:
    return [part.strip() for part in name.split(separator) if part.strip()]


def build_taxonomy(folders: List[MailboxFolder]) -> Dict[str, Any]:
    """
    Nest folders by path segment.

    Returns:
        {segment: {"name", "fullPath", "folderId", "children": {...}}}
        Intermediate segments with no folder of their own get folderId None.
    """
    taxonomy: Dict[str, Any] = {}
    for folder in sorted(folders, key=lambda f: len(f.path)):
        level = taxonomy
        for index, segment in enumerate(folder.path):
            node = level.setdefault(
                segment,
                {"name": segment, "fullPath": folder.path[: index + 1], "folderId": None, "children": {}},
            )
            if index == len(folder.path) - 1:
                node["folderId"] = folder.id
            level = node["children"]
    return taxonomy


def taxonomy_depth(taxonomy: Dict[str, Any]) -> int:
    """Deepest nesting level (a flat list of folders is depth 1)."""
    if not taxonomy:
        return 0
    return 1 + max(taxonomy_depth(node["children"]) for node in taxonomy.values())


def link_folders(folders: List[MailboxFolder]) -> List[MailboxFolder]:
    """Fill parent_id and child_count from path prefixes."""
    by_path = {tuple(f.path): f for f in folders}
    for folder in folders:
        parent = by_path.get(tuple(folder.path[:-1])) if len(folder.path) > 1 else None
        folder.parent_id = parent.id if parent else None
        folder.child_count = 0
    for folder in folders:
        if folder.parent_id:
            by_path[tuple(folder.path[:-1])].child_count += 1
    return folders


def discovery_summary(
    folders: List[MailboxFolder],
    system_count: int,
    categories: Optional[List[Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    taxonomy = build_taxonomy(folders)
    return {
        "totalFolders": len(folders) + system_count,
        "userFolders": len(folders),
        "systemFolders": system_count,
        "categories": categories or [],
        "folders": [f.to_response() for f in folders],
        "taxonomy": taxonomy,
        "discoveredAt": datetime.utcnow().isoformat(),
    }


class MailboxAdapter(abc.ABC):
    """Capability set shared by all mailbox providers."""

    provider: str

    @abc.abstractmethod
    async def discover(self, user: User) -> ProviderResult:
        """Folders, categories and nested taxonomy of the user's mailbox."""

    @abc.abstractmethod
    async def provision(self, user: User, items: List[ProvisionItem]) -> ProviderResult:
        """
        Create missing folders/labels.

        Data shape: {"created": [...], "skipped": [...], "failed": [...]}.
        Items are independent: one failure never aborts the batch, and an
        item that already exists is reported as skipped.
        """

    @abc.abstractmethod
    async def find_by_path(self, user: User, path: List[str]) -> ProviderResult:
        """Implemented(folder dict or None)."""

    @abc.abstractmethod
    async def find_by_name(self, user: User, name: str) -> ProviderResult:
        """Implemented(folder dict or None)."""

    @abc.abstractmethod
    async def get_statistics(self, user: User) -> ProviderResult:
        """Folder counts and hierarchy depth."""
