"""Diff a template against a target server into an ordered import plan."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from .models import (
    ChannelSpec,
    CreateChannelStep,
    CreateRoleStep,
    ImportPlan,
    ImportStrategy,
    PlanStep,
    RoleSpec,
    RoleSubject,
    Section,
    ServerSnapshot,
    SetPermissionOverwriteStep,
    SkipChannelStep,
    SkipRoleStep,
    Template,
    UpdateChannelStep,
    UpdateRoleStep,
    UpdateSettingsStep,
)
from .schema import ChannelType, name_key

log = logging.getLogger("sunnyvale.planner")


class _Candidates:
    """Existing target entities grouped by normalised name.

    Each entity can satisfy at most one template entry, so a template with
    two same-named channels maps onto two existing channels rather than
    updating one of them twice.
    """

    def __init__(self, pairs: Iterable[tuple[str, str]]) -> None:
        self._by_key: dict[str, list[str]] = {}
        for name, entity_id in pairs:
            self._by_key.setdefault(name_key(name), []).append(entity_id)

    def take(self, name: str) -> str | None:
        ids = self._by_key.get(name_key(name))
        if not ids:
            return None
        return ids.pop(0)

    @staticmethod
    def first_ids(pairs: Iterable[tuple[str, str]]) -> dict[str, str]:
        result: dict[str, str] = {}
        for name, entity_id in pairs:
            result.setdefault(name_key(name), entity_id)
        return result


class ImportPlanner:
    """Compute conflict-resolved import plans.

    Planning is pure: no API calls are made, the result depends only on the
    template, the snapshot of the target and the chosen strategy.

    * ``merge`` updates same-named entities in place and creates the rest.
    * ``overwrite`` creates every entry; existing entities are never deleted,
      so same-named duplicates may result.
    * ``skip`` leaves same-named entities untouched and creates the rest.

    Role steps come first in ascending template position, then categories,
    then the remaining channels, then server settings.
    """

    def plan(
        self,
        template: Template,
        snapshot: ServerSnapshot,
        strategy: ImportStrategy | str = ImportStrategy.MERGE,
        skip_sections: Iterable[Section | str] = (),
    ) -> ImportPlan:
        if template is None or snapshot is None:
            raise ValueError("plan() requires a template and a target snapshot")
        strategy = ImportStrategy(strategy)
        skipped = frozenset(Section(section) for section in skip_sections)

        role_pairs = [
            (r.name, r.id)
            for r in sorted(snapshot.custom_roles, key=lambda r: (r.position, r.id))
            if not r.managed
        ]
        channels = sorted(
            (c for c in snapshot.channels if c.type is not None),
            key=lambda c: (c.position, c.id),
        )
        category_pairs = [(c.name, c.id) for c in channels if c.type is ChannelType.CATEGORY]
        channel_pairs = [(c.name, c.id) for c in channels if c.type is not ChannelType.CATEGORY]
        existing_role_ids = _Candidates.first_ids(role_pairs)

        steps: list[PlanStep] = []
        warnings: list[str] = []

        if Section.ROLES not in skipped:
            candidates = _Candidates(role_pairs)
            for spec in sorted(template.roles, key=lambda r: r.position):
                steps.append(self._role_step(spec, candidates, strategy))
        else:
            warnings.extend(_missing_role_warnings(template, existing_role_ids))

        if Section.CHANNELS not in skipped:
            categories = _Candidates(category_pairs)
            others = _Candidates(channel_pairs)
            ordered = [c for c in template.channels if c.is_category] + [
                c for c in template.channels if not c.is_category
            ]
            for spec in ordered:
                pool = categories if spec.is_category else others
                steps.extend(self._channel_steps(spec, pool, strategy))

        settings = template.settings
        if (
            Section.SETTINGS not in skipped
            and settings is not None
            and not settings.is_empty()
            and strategy is not ImportStrategy.SKIP
        ):
            steps.append(UpdateSettingsStep(spec=settings, target_id=snapshot.guild_id))

        plan = ImportPlan(
            steps=tuple(steps),
            strategy=strategy,
            skipped_sections=skipped,
            everyone_role_id=snapshot.everyone_role_id,
            existing_role_ids=existing_role_ids,
            existing_category_ids=_Candidates.first_ids(category_pairs),
            warnings=tuple(warnings),
        )
        log.debug(
            "Planned %d steps for guild %s (%s, skipped=%s)",
            len(plan.steps),
            snapshot.guild_id,
            strategy.value,
            sorted(s.value for s in skipped),
        )
        return plan

    def _role_step(
        self, spec: RoleSpec, candidates: _Candidates, strategy: ImportStrategy
    ) -> PlanStep:
        if strategy is ImportStrategy.OVERWRITE:
            return CreateRoleStep(spec=spec)
        target_id = candidates.take(spec.name)
        if target_id is None:
            return CreateRoleStep(spec=spec)
        if strategy is ImportStrategy.MERGE:
            return UpdateRoleStep(spec=spec, target_id=target_id)
        return SkipRoleStep(spec=spec, target_id=target_id)

    def _channel_steps(
        self, spec: ChannelSpec, candidates: _Candidates, strategy: ImportStrategy
    ) -> list[PlanStep]:
        if strategy is ImportStrategy.OVERWRITE:
            return [CreateChannelStep(spec=spec)]
        target_id = candidates.take(spec.name)
        if target_id is None:
            # Overwrites travel with the create call and are resolved then.
            return [CreateChannelStep(spec=spec)]
        if strategy is ImportStrategy.SKIP:
            return [SkipChannelStep(spec=spec, target_id=target_id)]
        steps: list[PlanStep] = [UpdateChannelStep(spec=spec, target_id=target_id)]
        steps.extend(
            SetPermissionOverwriteStep(
                spec=overwrite, channel_name=spec.name, target_id=target_id
            )
            for overwrite in spec.permission_overwrites
        )
        return steps


def _missing_role_warnings(
    template: Template, existing_role_ids: dict[str, str]
) -> list[str]:
    warnings = []
    for channel in template.channels:
        for overwrite in channel.permission_overwrites:
            subject = overwrite.subject_ref
            if (
                isinstance(subject, RoleSubject)
                and name_key(subject.name) not in existing_role_ids
            ):
                warnings.append(
                    f"Role {subject.name!r} used by {channel.name!r} does not exist "
                    "on the target; its overwrite will be dropped"
                )
    return warnings
