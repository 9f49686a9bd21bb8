"""Base adapter interface for the live-server handle used by the engine."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass

from ..core.models import (
    ChannelSpec,
    GuildInfo,
    GuildSettings,
    LiveChannel,
    LiveRole,
    RoleSpec,
    ServerSnapshot,
)


@dataclass(frozen=True)
class ResolvedOverwrite:
    """A permission overwrite whose subject has been resolved to a role ID."""

    subject_id: str
    allow: int
    deny: int


class GuildAdapter(ABC):
    """Abstract handle on one server of a chat platform.

    Every mutation raises :class:`~sunnyvale_bot.errors.GuildAPIError` on
    failure.  Implementations do not retry beyond transport-level rate
    limiting; deciding whether to retry a step is up to the caller.
    """

    guild_id: str

    @abstractmethod
    async def fetch_guild(self) -> GuildInfo:
        """Return the server's identity and settings."""

    @abstractmethod
    async def list_roles(self) -> list[LiveRole]:
        """Return every role of the server, including the everyone role."""

    @abstractmethod
    async def list_channels(self) -> list[LiveChannel]:
        """Return every channel of the server, categories included."""

    @abstractmethod
    async def create_role(self, spec: RoleSpec) -> str:
        """Create a role from ``spec`` and return its identifier."""

    @abstractmethod
    async def update_role(self, role_id: str, spec: RoleSpec) -> None:
        """Overwrite the mutable attributes of ``role_id`` with ``spec``."""

    @abstractmethod
    async def move_role(self, role_id: str, position: int) -> None:
        """Place ``role_id`` at ``position`` in the hierarchy.

        New roles start at the bottom of the hierarchy, just above the
        everyone role, so callers position them explicitly.
        """

    @abstractmethod
    async def create_channel(
        self,
        spec: ChannelSpec,
        parent_id: str | None,
        overwrites: Sequence[ResolvedOverwrite],
    ) -> str:
        """Create a channel (or category) and return its identifier."""

    @abstractmethod
    async def update_channel(
        self, channel_id: str, spec: ChannelSpec, parent_id: str | None
    ) -> None:
        """Overwrite the mutable attributes of ``channel_id`` with ``spec``."""

    @abstractmethod
    async def set_permission_overwrite(
        self, channel_id: str, subject_id: str, allow: int, deny: int
    ) -> None:
        """Create or replace one role overwrite on ``channel_id``."""

    @abstractmethod
    async def update_settings(self, settings: GuildSettings) -> None:
        """Apply the non-``None`` fields of ``settings`` to the server."""

    # ------------------------------------------------------------------
    async def snapshot(self) -> ServerSnapshot:
        """Read the server's current structure into a :class:`ServerSnapshot`."""
        info = await self.fetch_guild()
        roles = await self.list_roles()
        channels = await self.list_channels()
        return ServerSnapshot(
            guild_id=info.id,
            name=info.name,
            description=info.description,
            owner_id=info.owner_id,
            everyone_role_id=info.id,
            roles=tuple(roles),
            channels=tuple(channels),
            settings=info.settings,
        )
