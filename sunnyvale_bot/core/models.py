"""Data models for the server template engine.

The models are implemented using :mod:`pydantic` so that they provide
runtime validation and convenient serialisation to and from the JSON wire
format.  Python attributes are snake_case; the wire names are camelCase and
produced through an alias generator, so ``Template.model_dump(by_alias=True)``
yields exactly the document described by the template schema.

Everything here is an immutable value.  The only mutable record of the
engine, :class:`~sunnyvale_bot.core.tracker.ImportOperation`, lives with the
tracker that owns it.
"""

from __future__ import annotations

from datetime import datetime
from collections.abc import Iterable
from enum import Enum
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator
from pydantic.alias_generators import to_camel

from .schema import DISCORD_API_VERSION, EVERYONE, SCHEMA_VERSION, ChannelType


class WireModel(BaseModel):
    """Frozen base model serialised with camelCase field names."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        coerce_numbers_to_str=True,
    )


# ----------------------------------------------------------------------
# Template document
# ----------------------------------------------------------------------
class RoleSubject(BaseModel):
    """A permission overwrite aimed at a role of the same template."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["role"] = "role"
    name: str

    @property
    def ref(self) -> str:
        return self.name


class EveryoneSubject(BaseModel):
    """A permission overwrite aimed at the server's implicit everyone role."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["everyone"] = "everyone"

    @property
    def ref(self) -> str:
        return EVERYONE


Subject = Annotated[RoleSubject | EveryoneSubject, Field(discriminator="kind")]


class PermissionOverwriteSpec(WireModel):
    """Per-channel allow/deny exception for one subject.

    On the wire ``subjectRef`` is a plain string: a role name or the literal
    ``"@everyone"``.  It is parsed into a tagged subject once, here, so no
    other code ever compares against the sentinel string.
    """

    subject_ref: Subject
    allow_bits: int = 0
    deny_bits: int = 0

    @field_validator("subject_ref", mode="before")
    @classmethod
    def _parse_subject(cls, value: object) -> object:
        if isinstance(value, (RoleSubject, EveryoneSubject)):
            return value.model_dump()
        if isinstance(value, str):
            if value == EVERYONE:
                return {"kind": "everyone"}
            return {"kind": "role", "name": value}
        return value

    @field_serializer("subject_ref")
    def _dump_subject(self, subject: RoleSubject | EveryoneSubject) -> str:
        return subject.ref


class RoleSpec(WireModel):
    name: str
    color: int = 0
    permissions: int = 0
    position: int
    hoist: bool = False
    mentionable: bool = False


class ChannelSpec(WireModel):
    name: str
    type: ChannelType
    topic: str | None = None
    slowmode_seconds: int | None = None
    parent_ref: str | None = None
    permission_overwrites: tuple[PermissionOverwriteSpec, ...] = ()
    position: int = 0
    nsfw: bool = False
    bitrate: int | None = None
    user_limit: int | None = None

    @property
    def is_category(self) -> bool:
        return self.type is ChannelType.CATEGORY


class GuildSettings(WireModel):
    """Server-wide settings carried by a template (all optional)."""

    verification_level: int | None = None
    default_message_notifications: int | None = None
    explicit_content_filter: int | None = None
    afk_timeout: int | None = None
    preferred_locale: str | None = None

    def is_empty(self) -> bool:
        return all(value is None for value in self.model_dump().values())


class ExportOptions(WireModel):
    """What to capture from the live server.

    ``excluded_channels`` and ``excluded_roles`` hold live IDs that are left
    out of the template entirely.
    """

    include_permissions: bool = True
    include_channel_data: bool = True
    include_role_data: bool = True
    excluded_channels: frozenset[str] = frozenset()
    excluded_roles: frozenset[str] = frozenset()

    @field_serializer("excluded_channels", "excluded_roles")
    def _dump_ids(self, ids: frozenset[str]) -> list[str]:
        return sorted(ids)


def required_bot_permissions(channels: Iterable[ChannelSpec]) -> tuple[str, ...]:
    """Bot permissions needed to import a template with ``channels``."""
    permissions = ("MANAGE_ROLES", "MANAGE_CHANNELS")
    if any(channel.permission_overwrites for channel in channels):
        permissions += ("MANAGE_PERMISSIONS",)
    return permissions


class TemplateCompatibility(WireModel):
    discord_api_version: str = DISCORD_API_VERSION
    minimum_bot_permissions: tuple[str, ...] = ()


class TemplateMetadata(WireModel):
    version: str = SCHEMA_VERSION
    created_at: datetime
    author_id: str
    tags: frozenset[str] = frozenset()
    source_guild_id: str | None = None
    # Only set on exported templates.
    export_options: ExportOptions | None = None
    compatibility: TemplateCompatibility | None = None

    @field_serializer("tags")
    def _dump_tags(self, tags: frozenset[str]) -> list[str]:
        return sorted(tags)


class Template(WireModel):
    """Portable description of a server's roles, channels and permissions."""

    name: str
    description: str = ""
    server_name: str
    roles: tuple[RoleSpec, ...]
    channels: tuple[ChannelSpec, ...]
    settings: GuildSettings | None = None
    metadata: TemplateMetadata

    def statistics(self) -> dict[str, int]:
        categories = sum(1 for c in self.channels if c.is_category)
        return {
            "roles": len(self.roles),
            "channels": len(self.channels) - categories,
            "categories": categories,
            "permissionOverwrites": sum(
                len(c.permission_overwrites) for c in self.channels
            ),
        }

    def to_json(self, indent: int | None = 2) -> str:
        return self.model_dump_json(by_alias=True, indent=indent)


# ----------------------------------------------------------------------
# Validation
# ----------------------------------------------------------------------
class ValidationIssue(WireModel):
    field: str
    message: str

    def __str__(self) -> str:
        return f"{self.field}: {self.message}"


class ValidationResult(WireModel):
    is_valid: bool
    errors: tuple[ValidationIssue, ...] = ()
    warnings: tuple[ValidationIssue, ...] = ()


# ----------------------------------------------------------------------
# Live / target server state
# ----------------------------------------------------------------------
class LiveRole(WireModel):
    id: str
    name: str
    color: int = 0
    permissions: int = 0
    position: int = 0
    hoist: bool = False
    mentionable: bool = False
    managed: bool = False


class LiveOverwrite(WireModel):
    id: str
    type: Literal["role", "member"] = "role"
    allow: int = 0
    deny: int = 0


class LiveChannel(WireModel):
    id: str
    name: str
    # ``None`` for kinds that are not templated (threads, directories, ...)
    type: ChannelType | None
    topic: str | None = None
    slowmode_seconds: int | None = None
    parent_id: str | None = None
    position: int = 0
    nsfw: bool = False
    bitrate: int | None = None
    user_limit: int | None = None
    overwrites: tuple[LiveOverwrite, ...] = ()


class GuildInfo(WireModel):
    id: str
    name: str
    description: str | None = None
    owner_id: str | None = None
    settings: GuildSettings | None = None


class ServerSnapshot(WireModel):
    """Point-in-time view of a server's structure.

    Produced by :meth:`GuildAdapter.snapshot` and consumed read-only by the
    exporter, the import-time validator and the planner.
    """

    guild_id: str
    name: str
    description: str | None = None
    owner_id: str | None = None
    # On Discord the everyone role shares the guild's ID.
    everyone_role_id: str
    roles: tuple[LiveRole, ...] = ()
    channels: tuple[LiveChannel, ...] = ()
    settings: GuildSettings | None = None

    @property
    def custom_roles(self) -> tuple[LiveRole, ...]:
        return tuple(r for r in self.roles if r.id != self.everyone_role_id)

    @property
    def existing_role_count(self) -> int:
        return len(self.custom_roles)

    @property
    def existing_channel_count(self) -> int:
        return sum(1 for c in self.channels if c.type is not ChannelType.CATEGORY)

    @property
    def existing_category_count(self) -> int:
        return sum(1 for c in self.channels if c.type is ChannelType.CATEGORY)


# ----------------------------------------------------------------------
# Import plan
# ----------------------------------------------------------------------
class ImportStrategy(str, Enum):
    MERGE = "merge"
    OVERWRITE = "overwrite"
    SKIP = "skip"


class Section(str, Enum):
    ROLES = "roles"
    CHANNELS = "channels"
    SETTINGS = "settings"


class CreateRoleStep(WireModel):
    kind: Literal["create_role"] = "create_role"
    spec: RoleSpec
    target_id: None = None

    @property
    def label(self) -> str:
        return f"create role {self.spec.name!r}"


class UpdateRoleStep(WireModel):
    kind: Literal["update_role"] = "update_role"
    spec: RoleSpec
    target_id: str

    @property
    def label(self) -> str:
        return f"update role {self.spec.name!r}"


class SkipRoleStep(WireModel):
    kind: Literal["skip_role"] = "skip_role"
    spec: RoleSpec
    target_id: str

    @property
    def label(self) -> str:
        return f"skip role {self.spec.name!r}"


class CreateChannelStep(WireModel):
    kind: Literal["create_channel"] = "create_channel"
    spec: ChannelSpec
    target_id: None = None

    @property
    def label(self) -> str:
        return f"create {self.spec.type.value} {self.spec.name!r}"


class UpdateChannelStep(WireModel):
    kind: Literal["update_channel"] = "update_channel"
    spec: ChannelSpec
    target_id: str

    @property
    def label(self) -> str:
        return f"update {self.spec.type.value} {self.spec.name!r}"


class SkipChannelStep(WireModel):
    kind: Literal["skip_channel"] = "skip_channel"
    spec: ChannelSpec
    target_id: str

    @property
    def label(self) -> str:
        return f"skip {self.spec.type.value} {self.spec.name!r}"


class SetPermissionOverwriteStep(WireModel):
    kind: Literal["set_permission_overwrite"] = "set_permission_overwrite"
    spec: PermissionOverwriteSpec
    channel_name: str
    # Target channel ID.  ``None`` means the channel is created earlier in
    # the same plan and is resolved at execution time.
    target_id: str | None = None

    @property
    def label(self) -> str:
        return f"set overwrite {self.spec.subject_ref.ref!r} on {self.channel_name!r}"


class UpdateSettingsStep(WireModel):
    kind: Literal["update_settings"] = "update_settings"
    spec: GuildSettings
    target_id: str

    @property
    def label(self) -> str:
        return "update server settings"


PlanStep = Annotated[
    CreateRoleStep
    | UpdateRoleStep
    | SkipRoleStep
    | CreateChannelStep
    | UpdateChannelStep
    | SkipChannelStep
    | SetPermissionOverwriteStep
    | UpdateSettingsStep,
    Field(discriminator="kind"),
]

ROLE_STEPS = (CreateRoleStep, UpdateRoleStep, SkipRoleStep)
CHANNEL_STEPS = (
    CreateChannelStep,
    UpdateChannelStep,
    SkipChannelStep,
    SetPermissionOverwriteStep,
)


class ImportPlan(WireModel):
    """Ordered, conflict-resolved steps that apply a template to a server."""

    steps: tuple[PlanStep, ...] = ()
    strategy: ImportStrategy
    skipped_sections: frozenset[Section] = frozenset()
    everyone_role_id: str
    # Target entities present at planning time, keyed by ``name_key``.  Used
    # to resolve references into sections that were not planned.
    existing_role_ids: dict[str, str] = Field(default_factory=dict)
    existing_category_ids: dict[str, str] = Field(default_factory=dict)
    warnings: tuple[str, ...] = ()

    @field_serializer("skipped_sections")
    def _dump_sections(self, sections: frozenset[Section]) -> list[str]:
        return sorted(section.value for section in sections)

    def count(self, *kinds: str) -> int:
        return sum(1 for step in self.steps if step.kind in kinds)


# ----------------------------------------------------------------------
# Execution results
# ----------------------------------------------------------------------
class StepOutcome(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    SKIPPED = "skipped"
    FAILED = "failed"


class OperationStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (
            OperationStatus.COMPLETED,
            OperationStatus.FAILED,
            OperationStatus.CANCELLED,
        )


class StepResult(WireModel):
    step: PlanStep
    outcome: StepOutcome
    target_id: str | None = None
    error: str | None = None
    warnings: tuple[str, ...] = ()


class ExecutionSummary(WireModel):
    operation_id: str
    status: OperationStatus
    results: tuple[StepResult, ...] = ()

    def _count(self, outcome: StepOutcome) -> int:
        return sum(1 for r in self.results if r.outcome is outcome)

    @property
    def created(self) -> int:
        return self._count(StepOutcome.CREATED)

    @property
    def updated(self) -> int:
        return self._count(StepOutcome.UPDATED)

    @property
    def skipped(self) -> int:
        return self._count(StepOutcome.SKIPPED)

    @property
    def failed(self) -> int:
        return self._count(StepOutcome.FAILED)
