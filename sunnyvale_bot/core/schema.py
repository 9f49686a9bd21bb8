"""Template schema constants and platform limits.

This module has no dependencies on the rest of the engine.  Everything that
describes *what a valid template looks like* (accepted versions, channel
kinds, Discord's hard ceilings) lives here so the exporter, validator and
adapter agree on a single definition.
"""

from __future__ import annotations

import re
from enum import Enum

from pydantic import BaseModel, ConfigDict

#: Version written into newly exported templates.
SCHEMA_VERSION = "1.0.0"

#: Major versions this code base knows how to import.
SUPPORTED_MAJOR_VERSIONS = frozenset({1})

VERSION_PATTERN = re.compile(r"^(\d+)\.(\d+)\.(\d+)$")

#: Discord REST API version the adapter speaks.
DISCORD_API_VERSION = "10"

#: Subject reference naming the server's implicit everyone role.
EVERYONE = "@everyone"


class ChannelType(str, Enum):
    """Portable channel kinds a template may contain."""

    TEXT = "text"
    VOICE = "voice"
    CATEGORY = "category"
    ANNOUNCEMENT = "announcement"
    STAGE = "stage"
    FORUM = "forum"


#: Channel kinds expected to carry a topic.
TOPIC_CHANNEL_TYPES = frozenset(
    {ChannelType.TEXT, ChannelType.ANNOUNCEMENT, ChannelType.FORUM}
)

# Discord API channel type codes.  Threads (10, 11, 12) and directories are
# deliberately absent: they are not part of a server's static structure.
DISCORD_CHANNEL_TYPES: dict[int, ChannelType] = {
    0: ChannelType.TEXT,
    2: ChannelType.VOICE,
    4: ChannelType.CATEGORY,
    5: ChannelType.ANNOUNCEMENT,
    13: ChannelType.STAGE,
    15: ChannelType.FORUM,
}
DISCORD_CHANNEL_CODES: dict[ChannelType, int] = {
    kind: code for code, kind in DISCORD_CHANNEL_TYPES.items()
}


class PlatformLimits(BaseModel):
    """Hard ceilings enforced by the chat platform."""

    model_config = ConfigDict(frozen=True)

    max_roles: int = 250
    max_channels: int = 500
    max_categories: int = 50
    max_template_name: int = 100
    max_description: int = 1000
    max_role_name: int = 100
    max_channel_name: int = 100
    max_topic: int = 1024
    max_slowmode_seconds: int = 21600
    max_color: int = 0xFFFFFF
    max_permission_overwrites: int = 10


DISCORD_LIMITS = PlatformLimits()


def parse_version(version: str) -> tuple[int, int, int] | None:
    """Return ``(major, minor, patch)`` or ``None`` if ``version`` is malformed."""
    match = VERSION_PATTERN.match(version)
    if match is None:
        return None
    major, minor, patch = (int(part) for part in match.groups())
    return major, minor, patch


def name_key(name: str) -> str:
    """Normalise an entity name for conflict matching."""
    return name.strip().casefold()
