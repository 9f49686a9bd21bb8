"""Helpers shared by the template slash commands.

Kept free of ``discord`` imports so they can be unit tested directly.
"""

from __future__ import annotations

from typing import Any

from ..core.models import ImportPlan, Section, ValidationResult
from ..core.service import ImportOutcome
from ..core.tracker import ImportOperation

MAX_LISTED_ISSUES = 10


def can_manage_templates(member: Any) -> bool:
    """Only server administrators may export or import templates."""
    permissions = getattr(member, "guild_permissions", None)
    return bool(permissions is not None and permissions.administrator)


def parse_skip_sections(raw: str | None) -> list[Section]:
    """Parse a comma-separated section list such as ``"roles, settings"``.

    Raises ``ValueError`` naming the first unknown section.
    """
    sections = []
    for part in (raw or "").split(","):
        name = part.strip().lower()
        if not name:
            continue
        try:
            sections.append(Section(name))
        except ValueError:
            valid = ", ".join(s.value for s in Section)
            raise ValueError(f"Unknown section `{name}` (expected: {valid})") from None
    return sections


def format_validation(result: ValidationResult, limit: int = MAX_LISTED_ISSUES) -> str:
    lines = ["✅ Template is valid." if result.is_valid else "❌ Template is invalid."]
    for label, issues in (("Error", result.errors), ("Warning", result.warnings)):
        for issue in issues[:limit]:
            lines.append(f"• {label}: `{issue.field}` {issue.message}")
        if len(issues) > limit:
            lines.append(f"• … and {len(issues) - limit} more {label.lower()}s")
    return "\n".join(lines)


def format_plan(plan: ImportPlan) -> str:
    counts = {
        "create": plan.count("create_role", "create_channel"),
        "update": plan.count(
            "update_role", "update_channel", "set_permission_overwrite", "update_settings"
        ),
        "skip": plan.count("skip_role", "skip_channel"),
    }
    text = (
        f"Plan ({plan.strategy.value}): {len(plan.steps)} steps, "
        f"{counts['create']} create, {counts['update']} update, {counts['skip']} skip"
    )
    for warning in plan.warnings[:MAX_LISTED_ISSUES]:
        text += f"\n⚠️ {warning}"
    return text


def format_outcome(outcome: ImportOutcome) -> str:
    if outcome.error:
        return f"❌ {outcome.error}\n{format_validation(outcome.validation)}"
    if outcome.dry_run and outcome.plan is not None:
        return f"🔍 Dry run, nothing was changed.\n{format_plan(outcome.plan)}"
    summary = outcome.summary
    if summary is None:
        return "Import finished."
    text = (
        f"Import `{summary.operation_id}` {summary.status.value}: "
        f"{summary.created} created, {summary.updated} updated, "
        f"{summary.skipped} skipped, {summary.failed} failed."
    )
    failures = [r for r in summary.results if r.error]
    for result in failures[:MAX_LISTED_ISSUES]:
        text += f"\n• {result.step.label}: {result.error}"
    return text


def format_operation(operation: ImportOperation) -> str:
    total = len(operation.plan.steps)
    text = (
        f"Import `{operation.id}`: {operation.status.value} "
        f"({len(operation.results)}/{total} steps)"
    )
    if operation.cancel_requested and not operation.is_terminal:
        text += ", cancellation requested"
    return text
