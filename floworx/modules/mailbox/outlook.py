"""
Outlook mailbox adapter.

Microsoft Graph support is not built yet: every capability returns
NotSupported so callers can show "coming soon" instead of an empty mailbox.
The color and folder-path helpers below are used when the Graph calls land,
and are exercised on their own today.
"""

import logging
import re
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from floworx.models import User
from floworx.modules.mailbox.base import (
    MailboxAdapter,
    NotSupported,
    ProviderResult,
    ProvisionItem,
    is_valid_hex_color,
)

logger = logging.getLogger(__name__)

PROVIDER = "outlook"
DEFAULT_PRESET = "preset0"

# Beyond this RGB distance a color is too far from every preset to count as a match
MAX_COLOR_DISTANCE = 120

# Outlook category color presets (Graph categoryColor values)
O365_PRESET_COLORS = {
    "preset0": "#e74856",   # Red
    "preset1": "#ff8c00",   # Orange
    "preset2": "#8e562e",   # Brown
    "preset3": "#fff100",   # Yellow
    "preset4": "#47d041",   # Green
    "preset5": "#30c6cc",   # Teal
    "preset6": "#73aa24",   # Olive
    "preset7": "#00bcf2",   # Blue
    "preset8": "#8764b8",   # Purple
    "preset9": "#f495bf",   # Cranberry
    "preset10": "#a0aeb2",  # Steel
    "preset11": "#004b60",  # DarkSteel
    "preset12": "#b1adab",  # Gray
    "preset13": "#5d5a58",  # DarkGray
    "preset14": "#000000",  # Black
    "preset15": "#750b1c",  # DarkRed
    "preset16": "#ca5010",  # DarkOrange
    "preset17": "#ab620d",  # DarkBrown
    "preset18": "#c19c00",  # DarkYellow
    "preset19": "#004e2c",  # DarkGreen
    "preset20": "#0b6a0b",  # DarkTeal
    "preset21": "#6b7c00",  # DarkOlive
    "preset22": "#002050",  # DarkBlue
    "preset23": "#5c2e91",  # DarkPurple
}


def _rgb(hex_color: str):
    value = hex_color.lstrip("#")
    return tuple(int(value[i:i + 2], 16) for i in (0, 2, 4))


def hex_to_o365_color(hex_color: Optional[str]) -> str:
    """
    Nearest Outlook preset for a hex color.

    Invalid colors, and colors further than MAX_COLOR_DISTANCE from every
    preset, fall back to preset0.
    """
    if not is_valid_hex_color(hex_color):
        return DEFAULT_PRESET

    target = _rgb(hex_color)
    best_preset, best_distance = DEFAULT_PRESET, None
    for preset, preset_hex in O365_PRESET_COLORS.items():
        distance = sum((a - b) ** 2 for a, b in zip(target, _rgb(preset_hex))) ** 0.5
        if best_distance is None or distance < best_distance:
            best_preset, best_distance = preset, distance

    if best_distance is None or best_distance > MAX_COLOR_DISTANCE:
        return DEFAULT_PRESET
    return best_preset


def parse_folder_path(path: Optional[str]) -> List[str]:
    """Split an Outlook folder path on "\\" or "/" and drop empty segments."""
    if not path:
        return []
    return [segment.strip() for segment in re.split(r"[\\/]", path) if segment.strip()]


class OutlookAdapter(MailboxAdapter):
    provider = PROVIDER

    def __init__(self, db: Optional[AsyncSession] = None):
        self.db = db

    def _not_supported(self, user: User, operation: str) -> NotSupported:
        logger.info(
            f"Outlook {operation} requested by user {user.id} (not implemented)",
            extra={"user_id": str(user.id), "operation": operation},
        )
        return NotSupported(PROVIDER, operation)

    async def discover(self, user: User) -> ProviderResult:
        return self._not_supported(user, "discover")

    async def provision(self, user: User, items: List[ProvisionItem]) -> ProviderResult:
        return self._not_supported(user, "provision")

    async def find_by_path(self, user: User, path: List[str]) -> ProviderResult:
        return self._not_supported(user, "find_by_path")

    async def find_by_name(self, user: User, name: str) -> ProviderResult:
        return self._not_supported(user, "find_by_name")

    async def get_statistics(self, user: User) -> ProviderResult:
        return self._not_supported(user, "get_statistics")
