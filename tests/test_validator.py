"""Tests for :class:`TemplateValidator`."""

from fakes import FakeGuild, template_document
from sunnyvale_bot.core.models import ServerSnapshot, Template
from sunnyvale_bot.core.schema import PlatformLimits
from sunnyvale_bot.core.validator import TemplateValidator


def fields(issues):
    return [issue.field for issue in issues]


def test_valid_template_has_no_errors(template_doc) -> None:
    result = TemplateValidator().validate(template_doc)
    assert result.is_valid
    assert result.errors == ()


def test_model_and_document_validate_identically(template_doc) -> None:
    validator = TemplateValidator()
    assert validator.validate(Template.model_validate(template_doc)) == validator.validate(
        template_doc
    )


def test_missing_required_fields_are_reported_with_paths() -> None:
    doc = template_document()
    del doc["serverName"]
    doc["channels"][0]["permissionOverwrites"][0]["allowBits"] = "lots"

    result = TemplateValidator().validate(doc)

    assert not result.is_valid
    assert "serverName" in fields(result.errors)
    assert "channels[0].permissionOverwrites[0].allowBits" in fields(result.errors)


def test_non_object_document_is_invalid() -> None:
    result = TemplateValidator().validate(["not", "a", "template"])
    assert not result.is_valid
    assert fields(result.errors) == ["$"]


def test_unsupported_and_malformed_versions() -> None:
    validator = TemplateValidator()
    doc = template_document()
    doc["metadata"]["version"] = "2.0.0"
    assert "metadata.version" in fields(validator.validate(doc).errors)

    doc["metadata"]["version"] = "1.0"
    assert "metadata.version" in fields(validator.validate(doc).errors)

    doc["metadata"]["version"] = "1.4.2"
    assert validator.validate(doc).is_valid


def test_role_checks() -> None:
    doc = template_document(
        roles=[
            {"name": "Mod", "position": 1, "color": 0x1000000},
            {"name": "mod", "position": 1},
            {"name": "", "position": 2, "permissions": -1},
        ]
    )
    result = TemplateValidator().validate(doc)

    errors = fields(result.errors)
    assert "roles[0].color" in errors
    assert "roles[1].position" in errors
    assert "roles[2].name" in errors
    assert "roles[2].permissions" in errors
    assert fields(result.warnings) == ["roles[1].name"]


def test_unknown_overwrite_subject_is_an_error() -> None:
    doc = template_document(roles=[])
    result = TemplateValidator().validate(doc)
    assert fields(result.errors) == ["channels[0].permissionOverwrites[0].subjectRef"]


def test_everyone_subject_needs_no_role() -> None:
    doc = template_document(
        roles=[],
        channels=[
            {
                "name": "general",
                "type": "text",
                "topic": "t",
                "permissionOverwrites": [{"subjectRef": "@everyone", "denyBits": 1}],
            }
        ],
    )
    assert TemplateValidator().validate(doc).is_valid


def test_parent_references() -> None:
    doc = template_document(
        roles=[],
        channels=[
            {"name": "Info", "type": "category"},
            {"name": "Nested", "type": "category", "parentRef": "Info"},
            {"name": "a", "type": "text", "topic": "t", "parentRef": "Info"},
            {"name": "b", "type": "text", "topic": "t", "parentRef": "a"},
            {"name": "c", "type": "text", "topic": "t", "parentRef": "Nowhere"},
        ],
    )
    result = TemplateValidator().validate(doc)
    assert fields(result.errors) == [
        "channels[1].parentRef",
        "channels[3].parentRef",
        "channels[4].parentRef",
    ]


def test_channel_field_checks() -> None:
    doc = template_document(
        roles=[],
        channels=[
            {"name": "general", "type": "text"},
            {"name": "slow", "type": "text", "topic": "x" * 1025, "slowmodeSeconds": 21601},
            {"name": "General", "type": "text", "topic": "t"},
            {"name": "general", "type": "category"},
        ],
    )
    result = TemplateValidator().validate(doc)

    assert fields(result.errors) == ["channels[1].topic", "channels[1].slowmodeSeconds"]
    # Categories and channels live in separate namespaces.
    assert fields(result.warnings) == ["channels[0].topic", "channels[2].name"]


def test_count_limits_use_configured_limits() -> None:
    limits = PlatformLimits(max_roles=1, max_channels=1, max_categories=0)
    doc = template_document(
        roles=[{"name": "a", "position": 1}, {"name": "b", "position": 2}],
        channels=[
            {"name": "x", "type": "text", "topic": "t"},
            {"name": "y", "type": "voice"},
            {"name": "Cat", "type": "category"},
        ],
    )
    result = TemplateValidator(limits).validate(doc)
    assert fields(result.errors) == ["roles", "channels", "channels"]


def test_too_many_overwrites_warns_then_blocks_import() -> None:
    limits = PlatformLimits(max_permission_overwrites=1)
    overwrites = [{"subjectRef": "Mod"}, {"subjectRef": "@everyone"}]
    doc = template_document(
        channels=[
            {
                "name": "general",
                "type": "text",
                "topic": "t",
                "permissionOverwrites": overwrites,
            }
        ]
    )
    validator = TemplateValidator(limits)
    snapshot = ServerSnapshot(guild_id="1", name="t", everyone_role_id="1")

    assert validator.validate(doc).is_valid
    assert fields(validator.validate(doc).warnings) == ["channels[0].permissionOverwrites"]
    import_result = validator.validate_for_import(doc, snapshot)
    assert fields(import_result.errors) == ["channels[0].permissionOverwrites"]


def test_import_validation_counts_existing_entities(template_doc) -> None:
    target = FakeGuild()
    for i in range(3):
        target.add_role(f"r{i}")
    snapshot = ServerSnapshot(
        guild_id=target.guild_id,
        name=target.name,
        everyone_role_id=target.guild_id,
        roles=tuple(target.roles),
    )
    validator = TemplateValidator(PlatformLimits(max_roles=3))

    assert validator.validate(template_doc).is_valid
    result = validator.validate_for_import(template_doc, snapshot)
    assert fields(result.errors) == ["roles"]
    assert "exceed the limit of 3" in result.errors[0].message
