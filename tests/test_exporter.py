"""Tests for :mod:`sunnyvale_bot.core.exporter`."""

import asyncio
import json
import logging

import pytest

from fakes import FIXED_NOW, SEND_MESSAGES
from sunnyvale_bot.core.exporter import ExportOptions, TemplateExporter
from sunnyvale_bot.core.models import EveryoneSubject, RoleSubject
from sunnyvale_bot.core.schema import ChannelType


def export(guild, name="Snapshot", options=None, **kwargs):
    exporter = TemplateExporter(clock=lambda: FIXED_NOW)
    return asyncio.run(exporter.export(guild, name, options=options, **kwargs))


def test_export_skips_everyone_and_managed_roles(source_guild) -> None:
    template = export(source_guild)

    assert [r.name for r in template.roles] == ["Member", "Moderator"]
    assert [r.position for r in template.roles] == [1, 2]
    moderator = template.roles[1]
    assert moderator.color == 0x3498DB
    assert moderator.permissions == 8
    assert moderator.hoist is True


def test_export_orders_categories_first_and_links_parents(source_guild) -> None:
    template = export(source_guild)

    names = [c.name for c in template.channels]
    assert names == ["Info", "rules", "Lounge"]
    assert template.channels[0].type is ChannelType.CATEGORY
    assert template.channels[1].parent_ref == "Info"
    assert template.channels[2].parent_ref is None
    assert template.channels[2].bitrate == 64000


def test_export_keeps_only_role_overwrites_for_exported_subjects(source_guild) -> None:
    rules = export(source_guild).channels[1]

    subjects = [o.subject_ref for o in rules.permission_overwrites]
    assert subjects == [EveryoneSubject(), RoleSubject(name="Moderator")]
    assert rules.permission_overwrites[0].deny_bits == SEND_MESSAGES


def test_export_options_strip_data(source_guild) -> None:
    options = ExportOptions(
        include_permissions=False, include_channel_data=False, include_role_data=False
    )
    template = export(source_guild, options=options)

    assert all(r.color == 0 and r.permissions == 0 for r in template.roles)
    assert all(not c.permission_overwrites for c in template.channels)
    assert template.channels[1].topic is None
    assert template.channels[2].bitrate is None


def test_excluded_roles_drop_their_overwrites(source_guild) -> None:
    moderator = source_guild.role_named("Moderator")[0]
    options = ExportOptions(excluded_roles=frozenset({moderator.id}))
    template = export(source_guild, options=options)

    assert [r.name for r in template.roles] == ["Member"]
    rules = template.channels[1]
    assert [o.subject_ref for o in rules.permission_overwrites] == [EveryoneSubject()]


def test_excluded_category_leaves_children_without_parent(source_guild) -> None:
    info = source_guild.channel_named("Info")[0]
    options = ExportOptions(excluded_channels=frozenset({info.id}))
    template = export(source_guild, options=options)

    assert [c.name for c in template.channels] == ["rules", "Lounge"]
    assert template.channels[0].parent_ref is None


def test_export_metadata(source_guild) -> None:
    template = export(source_guild, author_id="77", tags=["community"])

    assert template.server_name == "Sunnyvale"
    assert template.metadata.version == "1.0.0"
    assert template.metadata.created_at == FIXED_NOW
    assert template.metadata.author_id == "77"
    assert template.metadata.tags == frozenset({"community"})
    assert template.metadata.source_guild_id == "100"
    assert template.settings.verification_level == 2


def test_export_defaults_author_to_owner(source_guild) -> None:
    assert export(source_guild).metadata.author_id == "1"


@pytest.mark.parametrize("name", ["", "x" * 101])
def test_export_rejects_bad_names(source_guild, name) -> None:
    with pytest.raises(ValueError):
        export(source_guild, name=name)


def test_export_does_not_mutate(source_guild) -> None:
    export(source_guild)
    assert source_guild.calls == []


def test_export_records_options_and_required_permissions(source_guild) -> None:
    options = ExportOptions(excluded_roles=frozenset({"424242"}))
    template = export(source_guild, options=options)

    assert template.metadata.export_options == options
    assert template.metadata.compatibility.minimum_bot_permissions == (
        "MANAGE_ROLES",
        "MANAGE_CHANNELS",
        "MANAGE_PERMISSIONS",
    )
    metadata = json.loads(template.to_json())["metadata"]
    assert metadata["compatibility"] == {
        "discordApiVersion": "10",
        "minimumBotPermissions": ["MANAGE_ROLES", "MANAGE_CHANNELS", "MANAGE_PERMISSIONS"],
    }
    assert metadata["exportOptions"]["excludedRoles"] == ["424242"]
    assert metadata["exportOptions"]["includePermissions"] is True


def test_export_without_overwrites_needs_no_permission_management(source_guild) -> None:
    template = export(source_guild, options=ExportOptions(include_permissions=False))

    assert template.metadata.compatibility.minimum_bot_permissions == (
        "MANAGE_ROLES",
        "MANAGE_CHANNELS",
    )


def test_export_logs_validation_warnings(source_guild, caplog) -> None:
    caplog.set_level(logging.WARNING, logger="sunnyvale.exporter")

    export(source_guild, options=ExportOptions(include_channel_data=False))

    messages = [r.getMessage() for r in caplog.records if r.name == "sunnyvale.exporter"]
    assert messages == [
        "Exported template 'Snapshot': channels[1].topic: Channel 'rules' has no topic"
    ]


def test_clean_export_logs_no_warnings(source_guild, caplog) -> None:
    caplog.set_level(logging.WARNING, logger="sunnyvale.exporter")

    export(source_guild)

    assert not [r for r in caplog.records if r.levelno >= logging.WARNING]
