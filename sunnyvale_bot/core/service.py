"""Server template operations exposed to the command layer.

:class:`ServerTemplateService` wires the exporter, validator, planner,
executor and tracker together.  Each public method is a thin pass-through to
one of those components; the import method sequences them:

validate -> snapshot target -> validate against target -> plan ->
(preview | backup -> track -> execute).

The caller is expected to have authorised the acting user already.
"""

from __future__ import annotations

import asyncio
import json
import logging
import weakref
from collections.abc import Awaitable, Callable, Iterable, Mapping
from typing import Any

from ..adapters.base import GuildAdapter
from ..errors import GuildAPIError
from .executor import ImportExecutor, preview
from .exporter import ExportOptions, TemplateExporter
from .models import (
    ExecutionSummary,
    ImportPlan,
    ImportStrategy,
    OperationStatus,
    Section,
    ServerSnapshot,
    StepResult,
    Template,
    ValidationIssue,
    ValidationResult,
    WireModel,
)
from .planner import ImportPlanner
from .tracker import ImportOperation, OperationTracker
from .validator import TemplateValidator

log = logging.getLogger("sunnyvale.templates")

DEFAULT_OPERATION_MAX_AGE_MS = 24 * 60 * 60 * 1000


class ImportOutcome(WireModel):
    """Result of :meth:`ServerTemplateService.import_server_template`."""

    success: bool
    dry_run: bool = False
    strategy: ImportStrategy | None = None
    operation_id: str | None = None
    validation: ValidationResult
    plan: ImportPlan | None = None
    preview: tuple[StepResult, ...] = ()
    summary: ExecutionSummary | None = None
    backup: Template | None = None
    error: str | None = None


def _invalid_json(exc: json.JSONDecodeError) -> ValidationResult:
    return ValidationResult(
        is_valid=False,
        errors=(
            ValidationIssue(
                field="$",
                message=f"Invalid JSON: {exc.msg} (line {exc.lineno}, column {exc.colno})",
            ),
        ),
    )


class ServerTemplateService:
    """Export, validate and import server templates."""

    def __init__(
        self,
        *,
        exporter: TemplateExporter | None = None,
        validator: TemplateValidator | None = None,
        planner: ImportPlanner | None = None,
        executor: ImportExecutor | None = None,
        tracker: OperationTracker | None = None,
    ) -> None:
        self.exporter = exporter or TemplateExporter()
        self.validator = validator or TemplateValidator()
        self.planner = planner or ImportPlanner()
        self.executor = executor or ImportExecutor()
        self.tracker = tracker or OperationTracker()
        # One lock per target guild: imports into the same server run one
        # after another, imports into different servers run concurrently.
        # A lock lives only while some import holds or awaits it.
        self._guild_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    # ------------------------------------------------------------------
    # Export
    async def export_server_template(
        self,
        guild: GuildAdapter,
        name: str,
        description: str = "Exported server template",
        options: ExportOptions | None = None,
        *,
        author_id: str | None = None,
        tags: Iterable[str] = (),
    ) -> Template:
        """Capture ``guild`` as a template.  Raises ``GuildAPIError`` on read failure."""
        return await self.exporter.export(
            guild, name, description, options, author_id=author_id, tags=tags
        )

    async def export_template_to_json(
        self,
        guild: GuildAdapter,
        name: str,
        description: str = "Exported server template",
        options: ExportOptions | None = None,
        **kwargs: Any,
    ) -> str:
        template = await self.export_server_template(
            guild, name, description, options, **kwargs
        )
        return template.to_json()

    # ------------------------------------------------------------------
    # Validation
    def validate_template(self, template: Template | Mapping[str, Any]) -> ValidationResult:
        return self.validator.validate(template)

    def validate_template_json(self, text: str) -> ValidationResult:
        try:
            document = json.loads(text)
        except json.JSONDecodeError as exc:
            return _invalid_json(exc)
        return self.validator.validate(document)

    # ------------------------------------------------------------------
    # Import
    async def import_server_template(
        self,
        guild: GuildAdapter,
        template: Template | Mapping[str, Any],
        strategy: ImportStrategy | str = ImportStrategy.MERGE,
        *,
        dry_run: bool = False,
        backup_first: bool = True,
        skip_sections: Iterable[Section | str] = (),
        requested_by: str | None = None,
        on_start: Callable[[str], Awaitable[None]] | None = None,
    ) -> ImportOutcome:
        """Import ``template`` into ``guild``.

        Validation failures and failures to read the target are returned
        as an unsuccessful :class:`ImportOutcome`.  With ``dry_run`` the plan
        and its projected outcomes are returned and nothing is mutated.
        ``on_start`` is awaited with the operation ID as soon as the import
        is registered, before the first step runs; if it raises, the operation
        is marked failed and the exception propagates.
        """
        if guild is None:
            raise ValueError("import_server_template() requires a guild")
        strategy = ImportStrategy(strategy)
        skip_sections = frozenset(Section(s) for s in skip_sections)

        parsed, validation = self.validator.parse(template)
        if parsed is None or not validation.is_valid:
            return ImportOutcome(
                success=False,
                strategy=strategy,
                dry_run=dry_run,
                validation=validation,
                error="Template validation failed",
            )

        lock = self._guild_locks.get(guild.guild_id)
        if lock is None:
            lock = self._guild_locks[guild.guild_id] = asyncio.Lock()
        async with lock:
            try:
                snapshot = await guild.snapshot()
            except GuildAPIError as exc:
                log.warning("Could not read guild %s for import: %s", guild.guild_id, exc)
                return ImportOutcome(
                    success=False,
                    strategy=strategy,
                    dry_run=dry_run,
                    validation=validation,
                    error=f"Could not read the target server: {exc}",
                )

            validation = self.validator.validate_for_import(parsed, snapshot)
            if not validation.is_valid:
                return ImportOutcome(
                    success=False,
                    strategy=strategy,
                    dry_run=dry_run,
                    validation=validation,
                    error="Template does not fit the target server",
                )

            plan = self.planner.plan(parsed, snapshot, strategy, skip_sections)
            if dry_run:
                return ImportOutcome(
                    success=True,
                    dry_run=True,
                    strategy=strategy,
                    validation=validation,
                    plan=plan,
                    preview=preview(plan),
                )

            operation_id = self.tracker.start(
                snapshot.guild_id, plan, requested_by=requested_by
            )
            operation = self.tracker.get(operation_id)
            try:
                backup = None
                if backup_first:
                    backup = self._backup(snapshot, operation_id, requested_by)
                if on_start is not None:
                    await on_start(operation_id)
            except asyncio.CancelledError:
                operation.finish(OperationStatus.CANCELLED)
                raise
            except Exception as exc:
                log.warning(
                    "Import %s abandoned before its first step: %s", operation_id, exc
                )
                operation.finish(OperationStatus.FAILED)
                raise
            summary = await self.executor.execute(guild, plan, operation)

        return ImportOutcome(
            success=summary.status is OperationStatus.COMPLETED,
            strategy=strategy,
            operation_id=operation_id,
            validation=validation,
            plan=plan,
            summary=summary,
            backup=backup,
        )

    def _backup(
        self, snapshot: ServerSnapshot, operation_id: str, requested_by: str | None
    ) -> Template:
        # Named after the operation so backups never replace one another.
        suffix = f" ({operation_id})"
        limit = self.exporter.limits.max_template_name
        room = limit - len("Backup of ") - len(suffix)
        return self.exporter.from_snapshot(
            snapshot,
            f"Backup of {snapshot.name[:room]}{suffix}",
            "Automatic backup created before template import",
            author_id=requested_by,
        )

    async def import_template_from_json(
        self,
        guild: GuildAdapter,
        text: str,
        strategy: ImportStrategy | str = ImportStrategy.MERGE,
        **kwargs: Any,
    ) -> ImportOutcome:
        try:
            document = json.loads(text)
        except json.JSONDecodeError as exc:
            return ImportOutcome(
                success=False,
                strategy=ImportStrategy(strategy),
                dry_run=kwargs.get("dry_run", False),
                validation=_invalid_json(exc),
                error="Template is not valid JSON",
            )
        return await self.import_server_template(guild, document, strategy, **kwargs)

    # ------------------------------------------------------------------
    # Operations
    def get_import_status(self, operation_id: str) -> ImportOperation | None:
        return self.tracker.get(operation_id)

    def cancel_import(self, operation_id: str) -> bool:
        return self.tracker.cancel(operation_id)

    def cleanup_import_operations(
        self, max_age_ms: int = DEFAULT_OPERATION_MAX_AGE_MS
    ) -> int:
        return self.tracker.sweep(max_age_ms)
