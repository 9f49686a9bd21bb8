from __future__ import annotations

import discord

from ..commands.utils import can_manage_templates, format_operation
from ..core.service import ServerTemplateService


class ImportControlView(discord.ui.View):
    """Buttons attached to the "import started" message."""

    def __init__(self, service: ServerTemplateService, operation_id: str) -> None:
        super().__init__(timeout=None)
        self.service = service
        self.operation_id = operation_id

    @discord.ui.button(label="Cancel import", style=discord.ButtonStyle.danger)
    async def cancel(self, interaction: discord.Interaction, button: discord.ui.Button) -> None:
        if not can_manage_templates(interaction.user):
            await interaction.response.send_message(
                "Only server administrators can cancel imports.", ephemeral=True
            )
            return
        if self.service.cancel_import(self.operation_id):
            button.disabled = True
            await interaction.response.edit_message(view=self)
            await interaction.followup.send(
                "Cancellation requested; remaining steps will be skipped.", ephemeral=True
            )
        else:
            await interaction.response.send_message(
                "This import has already finished.", ephemeral=True
            )

    @discord.ui.button(label="Status", style=discord.ButtonStyle.secondary)
    async def status(self, interaction: discord.Interaction, button: discord.ui.Button) -> None:
        operation = self.service.get_import_status(self.operation_id)
        if operation is None:
            await interaction.response.send_message(
                "Import operation not found (it may have expired).", ephemeral=True
            )
            return
        await interaction.response.send_message(format_operation(operation), ephemeral=True)
