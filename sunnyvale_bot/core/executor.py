"""Apply an :class:`ImportPlan` to a server, one step at a time."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from ..adapters.base import GuildAdapter, ResolvedOverwrite
from ..errors import GuildAPIError
from .models import (
    ChannelSpec,
    CreateChannelStep,
    CreateRoleStep,
    EveryoneSubject,
    ExecutionSummary,
    ImportPlan,
    OperationStatus,
    PermissionOverwriteSpec,
    PlanStep,
    SetPermissionOverwriteStep,
    SkipChannelStep,
    SkipRoleStep,
    StepOutcome,
    StepResult,
    UpdateChannelStep,
    UpdateRoleStep,
    UpdateSettingsStep,
)
from .schema import name_key
from .tracker import ImportOperation

log = logging.getLogger("sunnyvale.executor")

_PROJECTED_OUTCOMES: dict[type, StepOutcome] = {
    CreateRoleStep: StepOutcome.CREATED,
    UpdateRoleStep: StepOutcome.UPDATED,
    SkipRoleStep: StepOutcome.SKIPPED,
    CreateChannelStep: StepOutcome.CREATED,
    UpdateChannelStep: StepOutcome.UPDATED,
    SkipChannelStep: StepOutcome.SKIPPED,
    SetPermissionOverwriteStep: StepOutcome.UPDATED,
    UpdateSettingsStep: StepOutcome.UPDATED,
}


def preview(plan: ImportPlan) -> tuple[StepResult, ...]:
    """Project the outcome of every step without touching the server."""
    return tuple(
        StepResult(step=step, outcome=_PROJECTED_OUTCOMES[type(step)], target_id=step.target_id)
        for step in plan.steps
    )


class _UnresolvedReference(Exception):
    """A step needs an ID that no earlier step produced."""


class _References:
    """Name to ID lookups for one run.

    Seeded with what existed on the target at planning time; every entity
    created, updated or skipped during the run replaces the seeded entry.
    """

    def __init__(self, plan: ImportPlan) -> None:
        self.everyone_id = plan.everyone_role_id
        self.roles = dict(plan.existing_role_ids)
        self.categories = dict(plan.existing_category_ids)
        self.channels: dict[str, str] = {}

    def remember_channel(self, spec: ChannelSpec, channel_id: str) -> None:
        if spec.is_category:
            self.categories[name_key(spec.name)] = channel_id
        else:
            self.channels[name_key(spec.name)] = channel_id

    def subject_id(self, overwrite: PermissionOverwriteSpec) -> str | None:
        subject = overwrite.subject_ref
        if isinstance(subject, EveryoneSubject):
            return self.everyone_id
        return self.roles.get(name_key(subject.name))

    def parent_id(self, spec: ChannelSpec, warnings: list[str]) -> str | None:
        if spec.parent_ref is None:
            return None
        parent_id = self.categories.get(name_key(spec.parent_ref))
        if parent_id is None:
            warnings.append(
                f"Parent category {spec.parent_ref!r} is unavailable; "
                "channel placed at top level"
            )
        return parent_id

    def overwrites(
        self, spec: ChannelSpec, warnings: list[str]
    ) -> list[ResolvedOverwrite]:
        resolved = []
        for overwrite in spec.permission_overwrites:
            subject_id = self.subject_id(overwrite)
            if subject_id is None:
                warnings.append(
                    f"Dropped overwrite for unresolved role {overwrite.subject_ref.ref!r}"
                )
                continue
            resolved.append(
                ResolvedOverwrite(
                    subject_id=subject_id,
                    allow=overwrite.allow_bits,
                    deny=overwrite.deny_bits,
                )
            )
        return resolved


_Handler = Callable[
    [GuildAdapter, PlanStep, _References, list[str]],
    Awaitable[tuple[StepOutcome, str | None]],
]


class ImportExecutor:
    """Run plan steps strictly in order against a :class:`GuildAdapter`.

    A failing step is recorded and execution moves on.  Cancellation is
    checked before each step; a call already in flight always finishes.
    Each step is bounded by ``step_timeout`` seconds (``None`` disables it).
    """

    def __init__(self, step_timeout: float | None = 30.0) -> None:
        self.step_timeout = step_timeout
        self._handlers: dict[type, _Handler] = {
            CreateRoleStep: self._create_role,
            UpdateRoleStep: self._update_role,
            SkipRoleStep: self._skip_role,
            CreateChannelStep: self._create_channel,
            UpdateChannelStep: self._update_channel,
            SkipChannelStep: self._skip_channel,
            SetPermissionOverwriteStep: self._set_permission_overwrite,
            UpdateSettingsStep: self._update_settings,
        }

    async def execute(
        self, guild: GuildAdapter, plan: ImportPlan, operation: ImportOperation
    ) -> ExecutionSummary:
        if plan is None or operation is None:
            raise ValueError("execute() requires a plan and an operation")
        refs = _References(plan)
        operation.mark_running()
        log.info("Executing import %s (%d steps)", operation.id, len(plan.steps))
        try:
            for index, step in enumerate(plan.steps):
                if operation.cancel_requested:
                    for remaining in plan.steps[index:]:
                        operation.record(
                            StepResult(step=remaining, outcome=StepOutcome.SKIPPED)
                        )
                    operation.finish(OperationStatus.CANCELLED)
                    log.info(
                        "Import %s cancelled after %d of %d steps",
                        operation.id,
                        index,
                        len(plan.steps),
                    )
                    return operation.summary()
                operation.record(await self._run_step(guild, step, refs))
        except asyncio.CancelledError:
            operation.finish(OperationStatus.CANCELLED)
            raise
        except Exception:
            log.exception("Import %s aborted by an unexpected error", operation.id)
            operation.finish(OperationStatus.FAILED)
            raise

        all_failed = bool(operation.results) and all(
            r.outcome is StepOutcome.FAILED for r in operation.results
        )
        operation.finish(OperationStatus.FAILED if all_failed else OperationStatus.COMPLETED)
        summary = operation.summary()
        log.info(
            "Import %s %s: created=%d updated=%d skipped=%d failed=%d",
            operation.id,
            summary.status.value,
            summary.created,
            summary.updated,
            summary.skipped,
            summary.failed,
        )
        return summary

    async def _run_step(
        self, guild: GuildAdapter, step: PlanStep, refs: _References
    ) -> StepResult:
        handler = self._handlers.get(type(step))
        if handler is None:
            raise TypeError(f"Unsupported plan step: {type(step).__name__}")
        warnings: list[str] = []
        try:
            call = handler(guild, step, refs, warnings)
            if self.step_timeout is None:
                outcome, target_id = await call
            else:
                outcome, target_id = await asyncio.wait_for(call, self.step_timeout)
        except (GuildAPIError, _UnresolvedReference) as exc:
            log.warning("Step failed (%s): %s", step.label, exc)
            return StepResult(
                step=step,
                outcome=StepOutcome.FAILED,
                error=str(exc),
                warnings=tuple(warnings),
            )
        except TimeoutError:
            log.warning("Step timed out (%s)", step.label)
            return StepResult(
                step=step,
                outcome=StepOutcome.FAILED,
                error=f"Timed out after {self.step_timeout}s",
                warnings=tuple(warnings),
            )
        for warning in warnings:
            log.warning("%s: %s", step.label, warning)
        return StepResult(
            step=step, outcome=outcome, target_id=target_id, warnings=tuple(warnings)
        )

    # ------------------------------------------------------------------
    # Step handlers
    async def _create_role(self, guild, step, refs, warnings):
        role_id = await guild.create_role(step.spec)
        refs.roles[name_key(step.spec.name)] = role_id
        await self._place_role(guild, role_id, step.spec, warnings)
        return StepOutcome.CREATED, role_id

    async def _update_role(self, guild, step, refs, warnings):
        await guild.update_role(step.target_id, step.spec)
        refs.roles[name_key(step.spec.name)] = step.target_id
        await self._place_role(guild, step.target_id, step.spec, warnings)
        return StepOutcome.UPDATED, step.target_id

    async def _place_role(self, guild, role_id, spec, warnings):
        # The role itself exists at this point; a failed move only warns.
        try:
            await guild.move_role(role_id, spec.position)
        except GuildAPIError as exc:
            warnings.append(
                f"Role {spec.name!r} could not be moved to position {spec.position}: {exc}"
            )

    async def _skip_role(self, guild, step, refs, warnings):
        refs.roles[name_key(step.spec.name)] = step.target_id
        return StepOutcome.SKIPPED, step.target_id

    async def _create_channel(self, guild, step, refs, warnings):
        parent_id = refs.parent_id(step.spec, warnings)
        overwrites = refs.overwrites(step.spec, warnings)
        channel_id = await guild.create_channel(step.spec, parent_id, overwrites)
        refs.remember_channel(step.spec, channel_id)
        return StepOutcome.CREATED, channel_id

    async def _update_channel(self, guild, step, refs, warnings):
        parent_id = refs.parent_id(step.spec, warnings)
        await guild.update_channel(step.target_id, step.spec, parent_id)
        refs.remember_channel(step.spec, step.target_id)
        return StepOutcome.UPDATED, step.target_id

    async def _skip_channel(self, guild, step, refs, warnings):
        refs.remember_channel(step.spec, step.target_id)
        return StepOutcome.SKIPPED, step.target_id

    async def _set_permission_overwrite(self, guild, step, refs, warnings):
        channel_id = step.target_id or refs.channels.get(name_key(step.channel_name))
        if channel_id is None:
            raise _UnresolvedReference(f"Channel {step.channel_name!r} was not created")
        subject_id = refs.subject_id(step.spec)
        if subject_id is None:
            raise _UnresolvedReference(
                f"Role {step.spec.subject_ref.ref!r} does not exist on the target"
            )
        await guild.set_permission_overwrite(
            channel_id, subject_id, step.spec.allow_bits, step.spec.deny_bits
        )
        return StepOutcome.UPDATED, channel_id

    async def _update_settings(self, guild, step, refs, warnings):
        await guild.update_settings(step.spec)
        return StepOutcome.UPDATED, step.target_id
