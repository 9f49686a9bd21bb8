"""Registration of the server template slash commands."""

from __future__ import annotations

import io
import json

import discord
from discord.ext import commands

from ..adapters.discord import DiscordAdapter
from ..config import Settings
from ..core.exporter import ExportOptions
from ..core.models import ImportStrategy, Template
from ..core.service import ServerTemplateService
from ..core.storage import TemplateStorage
from ..errors import GuildAPIError
from ..ui.views import ImportControlView
from .utils import (
    can_manage_templates,
    format_operation,
    format_outcome,
    format_validation,
    parse_skip_sections,
)

_STRATEGIES = [s.value for s in ImportStrategy]


def register_commands(
    bot: commands.Bot,
    service: ServerTemplateService,
    storage: TemplateStorage,
    settings: Settings,
) -> None:
    """Register template commands with optional compatibility shims."""
    tree = bot.tree
    choices = getattr(
        discord.app_commands, "choices", lambda **_kwargs: (lambda func: func)
    )

    def adapter_for(guild_id: int) -> DiscordAdapter:
        return DiscordAdapter(
            settings.token, str(guild_id), audit_reason="Sunnyvale server template"
        )

    async def deny(interaction: discord.Interaction) -> bool:
        if interaction.guild is None or not can_manage_templates(interaction.user):
            await interaction.response.send_message(
                "Only server administrators can manage templates.", ephemeral=True
            )
            return True
        return False

    @tree.command(name="template_export", description="Save this server as a template")
    @discord.app_commands.describe(
        name="Template name",
        description="Template description",
        include_permissions="Capture channel permission overwrites",
    )
    async def template_export(
        interaction: discord.Interaction,
        name: str,
        description: str = "Exported server template",
        include_permissions: bool = True,
    ) -> None:
        if await deny(interaction):
            return
        await interaction.response.defer(ephemeral=True, thinking=True)
        adapter = adapter_for(interaction.guild.id)
        try:
            template = await service.export_server_template(
                adapter,
                name,
                description,
                ExportOptions(include_permissions=include_permissions),
                author_id=str(interaction.user.id),
            )
        except (GuildAPIError, ValueError) as exc:
            await interaction.followup.send(f"Export failed: {exc}", ephemeral=True)
            return
        finally:
            await adapter.close()
        storage.add_template(template)
        stats = template.statistics()
        await interaction.followup.send(
            f"Saved template `{template.name}`: {stats['roles']} roles, "
            f"{stats['categories']} categories, {stats['channels']} channels.",
            file=discord.File(
                io.BytesIO(template.to_json().encode("utf-8")),
                filename=f"{template.name}.json",
            ),
            ephemeral=True,
        )

    @tree.command(name="template_upload", description="Store a template from a JSON file")
    @discord.app_commands.describe(file="Template JSON file")
    async def template_upload(
        interaction: discord.Interaction, file: discord.Attachment
    ) -> None:
        if await deny(interaction):
            return
        text = (await file.read()).decode("utf-8", errors="replace")
        result = service.validate_template_json(text)
        if not result.is_valid:
            await interaction.response.send_message(
                format_validation(result), ephemeral=True
            )
            return
        template = Template.model_validate(json.loads(text))
        storage.add_template(template)
        await interaction.response.send_message(
            f"Stored template `{template.name}`.\n{format_validation(result)}",
            ephemeral=True,
        )

    @tree.command(name="template_list", description="List stored templates")
    async def template_list(interaction: discord.Interaction) -> None:
        names = sorted(t.name for t in storage.all_templates())
        if not names:
            await interaction.response.send_message(
                "No templates have been saved yet.", ephemeral=True
            )
            return
        await interaction.response.send_message(
            "\n".join(f"• `{n}`" for n in names), ephemeral=True
        )

    @tree.command(name="template_validate", description="Validate a stored template")
    @discord.app_commands.describe(name="Template name")
    async def template_validate(interaction: discord.Interaction, name: str) -> None:
        template = storage.get_template(name)
        if template is None:
            await interaction.response.send_message("Template not found.", ephemeral=True)
            return
        await interaction.response.send_message(
            format_validation(service.validate_template(template)), ephemeral=True
        )

    @tree.command(name="template_import", description="Apply a stored template here")
    @discord.app_commands.describe(
        name="Template name",
        strategy="How to treat existing roles and channels with the same name",
        dry_run="Only show what would change",
        skip_sections="Comma-separated sections to leave out (roles, channels, settings)",
        backup_first="Export the current server before changing it",
    )
    @choices(
        strategy=[
            discord.app_commands.Choice(name=value, value=value) for value in _STRATEGIES
        ]
    )
    async def template_import(
        interaction: discord.Interaction,
        name: str,
        strategy: str = ImportStrategy.MERGE.value,
        dry_run: bool = False,
        skip_sections: str = "",
        backup_first: bool = True,
    ) -> None:
        if await deny(interaction):
            return
        template = storage.get_template(name)
        if template is None:
            await interaction.response.send_message("Template not found.", ephemeral=True)
            return
        try:
            sections = parse_skip_sections(skip_sections)
            chosen = ImportStrategy(strategy)
        except ValueError as exc:
            await interaction.response.send_message(str(exc), ephemeral=True)
            return

        await interaction.response.defer(ephemeral=True, thinking=True)

        async def announce(operation_id: str) -> None:
            await interaction.followup.send(
                f"Import `{operation_id}` started.",
                view=ImportControlView(service, operation_id),
                ephemeral=True,
            )

        adapter = adapter_for(interaction.guild.id)
        try:
            outcome = await service.import_server_template(
                adapter,
                template,
                chosen,
                dry_run=dry_run,
                backup_first=backup_first,
                skip_sections=sections,
                requested_by=str(interaction.user.id),
                on_start=announce,
            )
        finally:
            await adapter.close()
        if outcome.backup is not None:
            storage.add_template(outcome.backup)
        await interaction.followup.send(format_outcome(outcome), ephemeral=True)

    @tree.command(name="template_status", description="Show the status of an import")
    @discord.app_commands.describe(operation_id="Import operation ID")
    async def template_status(
        interaction: discord.Interaction, operation_id: str
    ) -> None:
        operation = service.get_import_status(operation_id)
        if operation is None:
            await interaction.response.send_message(
                "Import operation not found (it may have expired).", ephemeral=True
            )
            return
        await interaction.response.send_message(
            format_operation(operation), ephemeral=True
        )

    @tree.command(name="template_cancel", description="Cancel a running import")
    @discord.app_commands.describe(operation_id="Import operation ID")
    async def template_cancel(
        interaction: discord.Interaction, operation_id: str
    ) -> None:
        if await deny(interaction):
            return
        if service.cancel_import(operation_id):
            message = "Cancellation requested; the import stops before its next step."
        else:
            message = "No running import with that ID."
        await interaction.response.send_message(message, ephemeral=True)

    if hasattr(template_import, "autocomplete"):
        @template_import.autocomplete("name")
        @template_validate.autocomplete("name")
        async def template_name_autocomplete(
            interaction: discord.Interaction, current: str
        ) -> list[discord.app_commands.Choice[str]]:
            current_lower = current.lower()
            return [
                discord.app_commands.Choice(name=t.name, value=t.name)
                for t in storage.all_templates()
                if current_lower in t.name.lower()
            ][:25]
