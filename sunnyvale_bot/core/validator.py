"""Structural and platform-limit validation of templates.

Validation never raises for a bad template: every problem is reported as a
:class:`ValidationIssue` inside the returned :class:`ValidationResult`, so
callers can render the full list to a user and decide whether to proceed.
Errors block an import; warnings do not.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError

from .models import (
    RoleSubject,
    ServerSnapshot,
    Template,
    ValidationIssue,
    ValidationResult,
)
from .schema import (
    DISCORD_LIMITS,
    SUPPORTED_MAJOR_VERSIONS,
    TOPIC_CHANNEL_TYPES,
    PlatformLimits,
    name_key,
    parse_version,
)


class _Collector:
    """Accumulate issues in the order they are found."""

    def __init__(self) -> None:
        self.errors: list[ValidationIssue] = []
        self.warnings: list[ValidationIssue] = []

    def error(self, field: str, message: str) -> None:
        self.errors.append(ValidationIssue(field=field, message=message))

    def warning(self, field: str, message: str) -> None:
        self.warnings.append(ValidationIssue(field=field, message=message))

    def result(self) -> ValidationResult:
        return ValidationResult(
            is_valid=not self.errors,
            errors=tuple(self.errors),
            warnings=tuple(self.warnings),
        )


def _field_path(loc: tuple[int | str, ...]) -> str:
    path = ""
    for part in loc:
        if isinstance(part, int):
            path += f"[{part}]"
        else:
            path += f".{part}" if path else str(part)
    return path or "$"


class TemplateValidator:
    """Check templates against the schema and the platform's limits."""

    def __init__(self, limits: PlatformLimits = DISCORD_LIMITS) -> None:
        self.limits = limits

    # ------------------------------------------------------------------
    # Public API
    def parse(
        self, document: Template | Mapping[str, Any]
    ) -> tuple[Template | None, ValidationResult]:
        """Return the parsed template (if well-formed) and its validation."""
        collector = _Collector()
        template = self._coerce(document, collector)
        if template is not None:
            self._check_template(template, collector, import_time=False)
        return template, collector.result()

    def validate(self, template: Template | Mapping[str, Any]) -> ValidationResult:
        """Validate ``template`` (a model or a raw JSON document)."""
        return self.parse(template)[1]

    def validate_for_import(
        self, template: Template | Mapping[str, Any], snapshot: ServerSnapshot
    ) -> ValidationResult:
        """Validate ``template`` and check it fits into the target server."""
        collector = _Collector()
        parsed = self._coerce(template, collector)
        if parsed is None:
            return collector.result()
        self._check_template(parsed, collector, import_time=True)
        self._check_target_limits(parsed, snapshot, collector)
        return collector.result()

    # ------------------------------------------------------------------
    # Internal helpers
    def _coerce(
        self, document: Template | Mapping[str, Any], collector: _Collector
    ) -> Template | None:
        if isinstance(document, Template):
            return document
        if not isinstance(document, Mapping):
            collector.error("$", "Template must be a JSON object")
            return None
        try:
            return Template.model_validate(dict(document))
        except ValidationError as exc:
            for err in exc.errors():
                collector.error(_field_path(tuple(err["loc"])), err["msg"])
            return None

    def _check_template(
        self, template: Template, c: _Collector, *, import_time: bool
    ) -> None:
        limits = self.limits
        if not template.name.strip() or len(template.name) > limits.max_template_name:
            c.error(
                "name",
                f"Template name must be 1-{limits.max_template_name} characters",
            )
        if len(template.description) > limits.max_description:
            c.error(
                "description",
                f"Description exceeds {limits.max_description} characters",
            )
        if not template.server_name.strip():
            c.warning("serverName", "Origin server name is empty")

        version = parse_version(template.metadata.version)
        if version is None:
            c.error(
                "metadata.version",
                f"Invalid version {template.metadata.version!r}; "
                "expected MAJOR.MINOR.PATCH",
            )
        elif version[0] not in SUPPORTED_MAJOR_VERSIONS:
            c.error(
                "metadata.version",
                f"Unsupported template version {template.metadata.version}",
            )

        self._check_roles(template, c)
        self._check_channels(template, c, import_time=import_time)

    def _check_roles(self, template: Template, c: _Collector) -> None:
        limits = self.limits
        if len(template.roles) > limits.max_roles:
            c.error(
                "roles",
                f"Too many roles: {len(template.roles)} (max: {limits.max_roles})",
            )

        positions: dict[int, str] = {}
        seen_names: set[str] = set()
        for i, role in enumerate(template.roles):
            field = f"roles[{i}]"
            if not role.name.strip() or len(role.name) > limits.max_role_name:
                c.error(
                    f"{field}.name",
                    f"Role name must be 1-{limits.max_role_name} characters",
                )
            if not 0 <= role.color <= limits.max_color:
                c.error(f"{field}.color", f"Color {role.color} is not a 24-bit RGB value")
            if role.permissions < 0:
                c.error(f"{field}.permissions", "Permission bitset cannot be negative")
            if role.position in positions:
                c.error(
                    f"{field}.position",
                    f"Duplicate role position {role.position} "
                    f"(also used by {positions[role.position]!r})",
                )
            else:
                positions[role.position] = role.name
            key = name_key(role.name)
            if key in seen_names:
                c.warning(f"{field}.name", f"Duplicate role name {role.name!r}")
            seen_names.add(key)

    def _check_channels(
        self, template: Template, c: _Collector, *, import_time: bool
    ) -> None:
        limits = self.limits
        role_names = {role.name for role in template.roles}
        category_names = {ch.name for ch in template.channels if ch.is_category}
        channel_names = {ch.name for ch in template.channels}

        stats = template.statistics()
        if stats["channels"] > limits.max_channels:
            c.error(
                "channels",
                f"Too many channels: {stats['channels']} (max: {limits.max_channels})",
            )
        if stats["categories"] > limits.max_categories:
            c.error(
                "channels",
                f"Too many categories: {stats['categories']} "
                f"(max: {limits.max_categories})",
            )

        seen: set[tuple[bool, str]] = set()
        for i, channel in enumerate(template.channels):
            field = f"channels[{i}]"
            if not channel.name.strip() or len(channel.name) > limits.max_channel_name:
                c.error(
                    f"{field}.name",
                    f"Channel name must be 1-{limits.max_channel_name} characters",
                )
            key = (channel.is_category, name_key(channel.name))
            if key in seen:
                c.warning(f"{field}.name", f"Duplicate channel name {channel.name!r}")
            seen.add(key)

            if channel.topic is not None and len(channel.topic) > limits.max_topic:
                c.error(f"{field}.topic", f"Topic exceeds {limits.max_topic} characters")
            elif channel.topic is None and channel.type in TOPIC_CHANNEL_TYPES:
                c.warning(f"{field}.topic", f"Channel {channel.name!r} has no topic")

            if channel.slowmode_seconds is not None and not (
                0 <= channel.slowmode_seconds <= limits.max_slowmode_seconds
            ):
                c.error(
                    f"{field}.slowmodeSeconds",
                    f"Slowmode must be 0-{limits.max_slowmode_seconds} seconds",
                )

            if channel.parent_ref is not None:
                if channel.is_category:
                    c.error(f"{field}.parentRef", "Categories cannot have a parent")
                elif channel.parent_ref not in category_names:
                    if channel.parent_ref in channel_names:
                        message = f"Parent {channel.parent_ref!r} is not a category"
                    else:
                        message = f"Unknown parent channel {channel.parent_ref!r}"
                    c.error(f"{field}.parentRef", message)

            overwrites = channel.permission_overwrites
            for j, overwrite in enumerate(overwrites):
                subject = overwrite.subject_ref
                if isinstance(subject, RoleSubject) and subject.name not in role_names:
                    c.error(
                        f"{field}.permissionOverwrites[{j}].subjectRef",
                        f"Unknown role {subject.name!r}",
                    )
            if len(overwrites) > limits.max_permission_overwrites:
                message = (
                    f"Too many permission overwrites ({len(overwrites)}, "
                    f"max: {limits.max_permission_overwrites})"
                )
                if import_time:
                    c.error(f"{field}.permissionOverwrites", message)
                else:
                    c.warning(f"{field}.permissionOverwrites", message)

    def _check_target_limits(
        self, template: Template, snapshot: ServerSnapshot, c: _Collector
    ) -> None:
        limits = self.limits
        stats = template.statistics()
        checks = (
            ("roles", stats["roles"], snapshot.existing_role_count, limits.max_roles),
            (
                "channels",
                stats["channels"],
                snapshot.existing_channel_count,
                limits.max_channels,
            ),
            (
                "categories",
                stats["categories"],
                snapshot.existing_category_count,
                limits.max_categories,
            ),
        )
        for label, incoming, existing, maximum in checks:
            if incoming + existing > maximum:
                c.error(
                    "roles" if label == "roles" else "channels",
                    f"Importing {incoming} {label} into a server with {existing} "
                    f"would exceed the limit of {maximum}",
                )
