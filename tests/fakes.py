"""In-memory guild and template documents used across the tests."""

from __future__ import annotations

import asyncio
import datetime
from collections.abc import Callable, Sequence
from typing import Any

from sunnyvale_bot.adapters.base import GuildAdapter, ResolvedOverwrite
from sunnyvale_bot.core.models import (
    ChannelSpec,
    GuildInfo,
    GuildSettings,
    LiveChannel,
    LiveOverwrite,
    LiveRole,
    RoleSpec,
)
from sunnyvale_bot.errors import GuildAPIError

VIEW_CHANNEL = 1 << 10
SEND_MESSAGES = 1 << 11


class FakeGuild(GuildAdapter):
    """Guild kept entirely in memory.

    ``failures`` maps ``(method, name)`` to an exception raised by that call,
    where ``name`` is the role or channel name (the channel ID for overwrites).
    ``delays`` maps a method name to seconds slept before it acts.
    ``after_call`` is invoked with the method name after every mutation.
    """

    def __init__(
        self,
        guild_id: str = "100",
        name: str = "Sunnyvale",
        *,
        owner_id: str | None = "1",
        settings: GuildSettings | None = None,
    ) -> None:
        self.guild_id = guild_id
        self.name = name
        self.owner_id = owner_id
        self.settings = settings
        self.roles: list[LiveRole] = [LiveRole(id=guild_id, name="@everyone")]
        self.channels: list[LiveChannel] = []
        self.calls: list[tuple[str, Any]] = []
        self.failures: dict[tuple[str, str], Exception] = {}
        self.delays: dict[str, float] = {}
        self.after_call: Callable[[str], None] | None = None
        self.fail_reads = False
        self._next_id = 1000

    # helpers -----------------------------------------------------------
    def new_id(self) -> str:
        self._next_id += 1
        return str(self._next_id)

    def add_role(self, name: str, **kwargs: Any) -> LiveRole:
        kwargs.setdefault("position", len(self.roles))
        role = LiveRole(id=self.new_id(), name=name, **kwargs)
        self.roles.append(role)
        return role

    def add_channel(self, name: str, type: str = "text", **kwargs: Any) -> LiveChannel:
        kwargs.setdefault("position", len(self.channels))
        channel = LiveChannel(id=self.new_id(), name=name, type=type, **kwargs)
        self.channels.append(channel)
        return channel

    def role_named(self, name: str) -> list[LiveRole]:
        return [r for r in self.roles if r.name == name]

    def channel_named(self, name: str) -> list[LiveChannel]:
        return [c for c in self.channels if c.name == name]

    def channel(self, channel_id: str) -> LiveChannel:
        return next(c for c in self.channels if c.id == channel_id)

    async def _enter(self, method: str, key: str) -> None:
        self.calls.append((method, key))
        delay = self.delays.get(method)
        if delay:
            await asyncio.sleep(delay)
        failure = self.failures.get((method, key))
        if failure is not None:
            raise failure

    def _leave(self, method: str) -> None:
        if self.after_call is not None:
            self.after_call(method)

    def _replace_channel(self, channel_id: str, **changes: Any) -> None:
        self.channels = [
            c.model_copy(update=changes) if c.id == channel_id else c
            for c in self.channels
        ]

    # reads -------------------------------------------------------------
    async def fetch_guild(self) -> GuildInfo:
        if self.fail_reads:
            raise GuildAPIError("Missing Access", 403)
        return GuildInfo(
            id=self.guild_id,
            name=self.name,
            owner_id=self.owner_id,
            settings=self.settings,
        )

    async def list_roles(self) -> list[LiveRole]:
        return list(self.roles)

    async def list_channels(self) -> list[LiveChannel]:
        return list(self.channels)

    # mutations ---------------------------------------------------------
    async def create_role(self, spec: RoleSpec) -> str:
        await self._enter("create_role", spec.name)
        # Like Discord, a new role starts at the bottom of the hierarchy.
        self.roles = [
            r if r.id == self.guild_id else r.model_copy(update={"position": r.position + 1})
            for r in self.roles
        ]
        role = LiveRole(
            id=self.new_id(),
            name=spec.name,
            color=spec.color,
            permissions=spec.permissions,
            position=1,
            hoist=spec.hoist,
            mentionable=spec.mentionable,
        )
        self.roles.append(role)
        self._leave("create_role")
        return role.id

    async def update_role(self, role_id: str, spec: RoleSpec) -> None:
        await self._enter("update_role", spec.name)
        self.roles = [
            r.model_copy(
                update={
                    "name": spec.name,
                    "color": spec.color,
                    "permissions": spec.permissions,
                    "hoist": spec.hoist,
                    "mentionable": spec.mentionable,
                }
            )
            if r.id == role_id
            else r
            for r in self.roles
        ]
        self._leave("update_role")

    async def move_role(self, role_id: str, position: int) -> None:
        moving = next(r for r in self.roles if r.id == role_id)
        await self._enter("move_role", moving.name)
        ladder = sorted(
            (r for r in self.roles if r.id not in (self.guild_id, role_id)),
            key=lambda r: r.position,
        )
        ladder.insert(min(max(position, 1), len(ladder) + 1) - 1, moving)
        positions = {r.id: index for index, r in enumerate(ladder, start=1)}
        self.roles = [
            r.model_copy(update={"position": positions[r.id]}) if r.id in positions else r
            for r in self.roles
        ]
        self._leave("move_role")

    async def create_channel(
        self,
        spec: ChannelSpec,
        parent_id: str | None,
        overwrites: Sequence[ResolvedOverwrite],
    ) -> str:
        await self._enter("create_channel", spec.name)
        channel = LiveChannel(
            id=self.new_id(),
            name=spec.name,
            type=spec.type,
            topic=spec.topic,
            slowmode_seconds=spec.slowmode_seconds,
            parent_id=parent_id,
            position=spec.position,
            nsfw=spec.nsfw,
            bitrate=spec.bitrate,
            user_limit=spec.user_limit,
            overwrites=tuple(
                LiveOverwrite(id=o.subject_id, allow=o.allow, deny=o.deny)
                for o in overwrites
            ),
        )
        self.channels.append(channel)
        self._leave("create_channel")
        return channel.id

    async def update_channel(
        self, channel_id: str, spec: ChannelSpec, parent_id: str | None
    ) -> None:
        await self._enter("update_channel", spec.name)
        self._replace_channel(
            channel_id,
            name=spec.name,
            topic=spec.topic,
            slowmode_seconds=spec.slowmode_seconds,
            parent_id=parent_id,
            position=spec.position,
        )
        self._leave("update_channel")

    async def set_permission_overwrite(
        self, channel_id: str, subject_id: str, allow: int, deny: int
    ) -> None:
        await self._enter("set_permission_overwrite", channel_id)
        current = self.channel(channel_id)
        overwrites = tuple(o for o in current.overwrites if o.id != subject_id)
        overwrites += (LiveOverwrite(id=subject_id, allow=allow, deny=deny),)
        self._replace_channel(channel_id, overwrites=overwrites)
        self._leave("set_permission_overwrite")

    async def update_settings(self, settings: GuildSettings) -> None:
        await self._enter("update_settings", self.guild_id)
        self.settings = settings
        self._leave("update_settings")


def template_document(**overrides: Any) -> dict[str, Any]:
    """Wire-format template with one role and one channel referencing it."""
    doc: dict[str, Any] = {
        "name": "Starter",
        "description": "Starter layout",
        "serverName": "Origin",
        "roles": [{"name": "Mod", "position": 5, "color": 0xFF0000}],
        "channels": [
            {
                "name": "general",
                "type": "text",
                "topic": "Chat",
                "permissionOverwrites": [
                    {"subjectRef": "Mod", "allowBits": VIEW_CHANNEL, "denyBits": 0}
                ],
            }
        ],
        "metadata": {
            "version": "1.0.0",
            "createdAt": "2024-01-01T00:00:00Z",
            "authorId": "42",
        },
    }
    doc.update(overrides)
    return doc


FIXED_NOW = datetime.datetime(2024, 5, 1, 12, 0, tzinfo=datetime.timezone.utc)


def populated_guild() -> FakeGuild:
    """A guild with a bit of everything, including things that never export."""
    g = FakeGuild(settings=GuildSettings(verification_level=2, preferred_locale="en-US"))
    mod = g.add_role("Moderator", color=0x3498DB, permissions=8, hoist=True, position=2)
    g.add_role("Member", permissions=SEND_MESSAGES, position=1)
    g.add_role("Some Bot", managed=True, position=3)
    info = g.add_channel("Info", "category", position=0)
    g.add_channel(
        "rules",
        "text",
        topic="Read me",
        parent_id=info.id,
        position=1,
        overwrites=(
            LiveOverwrite(id=g.guild_id, deny=SEND_MESSAGES),
            LiveOverwrite(id=mod.id, allow=SEND_MESSAGES),
            LiveOverwrite(id="424242", type="member", allow=VIEW_CHANNEL),
        ),
    )
    g.add_channel("Lounge", "voice", bitrate=64000, user_limit=10, position=2)
    g.add_channel("a-thread", None, position=3)
    return g
