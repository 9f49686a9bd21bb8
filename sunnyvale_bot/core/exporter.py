"""Capture a live server's structure into a portable :class:`Template`."""

from __future__ import annotations

import datetime
import logging
from collections.abc import Callable, Iterable
from datetime import UTC

from ..adapters.base import GuildAdapter
from .models import (
    ChannelSpec,
    EveryoneSubject,
    ExportOptions,
    LiveChannel,
    PermissionOverwriteSpec,
    RoleSpec,
    RoleSubject,
    ServerSnapshot,
    Template,
    TemplateCompatibility,
    TemplateMetadata,
    required_bot_permissions,
)
from .schema import DISCORD_LIMITS, SCHEMA_VERSION, ChannelType, PlatformLimits
from .validator import TemplateValidator

log = logging.getLogger("sunnyvale.exporter")


class TemplateExporter:
    """Turn live server state into a :class:`Template`.

    Exporting never mutates the server: :meth:`export` performs reads only
    and :meth:`from_snapshot` is a pure function of its arguments.
    """

    def __init__(
        self,
        limits: PlatformLimits = DISCORD_LIMITS,
        clock: Callable[[], datetime.datetime] | None = None,
        validator: TemplateValidator | None = None,
    ) -> None:
        self.limits = limits
        self.validator = validator or TemplateValidator(limits)
        self._clock = clock or (lambda: datetime.datetime.now(tz=UTC))

    async def export(
        self,
        guild: GuildAdapter,
        name: str,
        description: str = "Exported server template",
        options: ExportOptions | None = None,
        *,
        author_id: str | None = None,
        tags: Iterable[str] = (),
    ) -> Template:
        """Read ``guild`` and return it as a template called ``name``."""
        snapshot = await guild.snapshot()
        return self.from_snapshot(
            snapshot, name, description, options, author_id=author_id, tags=tags
        )

    def from_snapshot(
        self,
        snapshot: ServerSnapshot,
        name: str,
        description: str = "Exported server template",
        options: ExportOptions | None = None,
        *,
        author_id: str | None = None,
        tags: Iterable[str] = (),
    ) -> Template:
        if not name or len(name) > self.limits.max_template_name:
            raise ValueError(
                "Template name must be between 1 and "
                f"{self.limits.max_template_name} characters"
            )
        options = options or ExportOptions()

        # live role ID -> exported role name
        role_names: dict[str, str] = {}
        roles: list[RoleSpec] = []
        live_roles = sorted(
            (
                r
                for r in snapshot.custom_roles
                if not r.managed and r.id not in options.excluded_roles
            ),
            key=lambda r: (r.position, r.id),
        )
        for position, role in enumerate(live_roles, start=1):
            roles.append(
                RoleSpec(
                    name=role.name,
                    color=role.color if options.include_role_data else 0,
                    permissions=role.permissions if options.include_role_data else 0,
                    position=position,
                    hoist=role.hoist,
                    mentionable=role.mentionable,
                )
            )
            role_names[role.id] = role.name

        exportable = [
            c
            for c in snapshot.channels
            if c.type is not None and c.id not in options.excluded_channels
        ]
        categories = sorted(
            (c for c in exportable if c.type is ChannelType.CATEGORY),
            key=lambda c: (c.position, c.id),
        )
        others = sorted(
            (c for c in exportable if c.type is not ChannelType.CATEGORY),
            key=lambda c: (c.position, c.id),
        )

        # live category ID -> exported category name
        category_names: dict[str, str] = {}
        channels: list[ChannelSpec] = []
        for channel in categories + others:
            parent_ref = None
            if channel.parent_id is not None:
                parent_ref = category_names.get(channel.parent_id)
            channels.append(
                self._channel_spec(channel, parent_ref, snapshot, role_names, options)
            )
            if channel.type is ChannelType.CATEGORY:
                category_names[channel.id] = channel.name

        template = Template(
            name=name,
            description=description,
            server_name=snapshot.name,
            roles=tuple(roles),
            channels=tuple(channels),
            settings=snapshot.settings,
            metadata=TemplateMetadata(
                version=SCHEMA_VERSION,
                created_at=self._clock(),
                author_id=author_id or snapshot.owner_id or "unknown",
                tags=frozenset(tags),
                source_guild_id=snapshot.guild_id,
                export_options=options,
                compatibility=TemplateCompatibility(
                    minimum_bot_permissions=required_bot_permissions(channels)
                ),
            ),
        )
        validation = self.validator.validate(template)
        for issue in validation.errors + validation.warnings:
            log.warning("Exported template %r: %s", name, issue)
        log.info(
            "Exported template %r from guild %s: %s",
            name,
            snapshot.guild_id,
            template.statistics(),
        )
        return template

    def _channel_spec(
        self,
        channel: LiveChannel,
        parent_ref: str | None,
        snapshot: ServerSnapshot,
        role_names: dict[str, str],
        options: ExportOptions,
    ) -> ChannelSpec:
        overwrites: tuple[PermissionOverwriteSpec, ...] = ()
        if options.include_permissions:
            overwrites = tuple(_export_overwrites(channel, snapshot, role_names))
        data = {}
        if options.include_channel_data:
            data = {
                "topic": channel.topic,
                "slowmode_seconds": channel.slowmode_seconds,
                "nsfw": channel.nsfw,
                "bitrate": channel.bitrate,
                "user_limit": channel.user_limit,
            }
        return ChannelSpec(
            name=channel.name,
            type=channel.type,
            parent_ref=parent_ref,
            permission_overwrites=overwrites,
            position=channel.position,
            **data,
        )


def _export_overwrites(
    channel: LiveChannel, snapshot: ServerSnapshot, role_names: dict[str, str]
) -> Iterable[PermissionOverwriteSpec]:
    """Yield overwrites whose subject is exported or is the everyone role.

    Member overwrites and overwrites naming excluded or managed roles are
    dropped so the template never holds a dangling reference.
    """
    for overwrite in channel.overwrites:
        if overwrite.type != "role":
            continue
        if overwrite.id == snapshot.everyone_role_id:
            subject: RoleSubject | EveryoneSubject = EveryoneSubject()
        elif overwrite.id in role_names:
            subject = RoleSubject(name=role_names[overwrite.id])
        else:
            continue
        yield PermissionOverwriteSpec(
            subject_ref=subject, allow_bits=overwrite.allow, deny_bits=overwrite.deny
        )
