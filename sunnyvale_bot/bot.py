"""Discord bot hosting the server template commands.

The bot itself is small: it owns the discord.py connection, syncs the slash
command tree and runs one background loop that sweeps finished import
operations out of memory so the tracker does not grow without bound.
"""

from __future__ import annotations

from typing import Any

import discord
from discord.ext import commands, tasks

from .core.service import DEFAULT_OPERATION_MAX_AGE_MS, ServerTemplateService
from .logging_config import setup_logging


class SunnyvaleBot(commands.Bot):
    """Small ``discord.py`` based bot used for server template management."""

    background_task: tasks.Loop | None

    def __init__(self, **kwargs: Any) -> None:  # pragma: no cover - trivial
        """Initialize the bot with the minimal intents required."""
        intents = kwargs.pop("intents", None) or discord.Intents.default()
        # Slash commands only; message content intent not needed.
        intents.message_content = False
        self.sweep_interval = float(kwargs.pop("sweep_interval", 3600.0))
        self.operation_max_age_ms = int(
            kwargs.pop("operation_max_age_ms", DEFAULT_OPERATION_MAX_AGE_MS)
        )
        super().__init__(
            command_prefix=kwargs.pop("command_prefix", "!"),
            intents=intents,
        )
        self.log = setup_logging()
        self.background_task = None

    async def setup_hook(self) -> None:
        """Start the sweep loop and sync slash commands."""
        self.background_task = tasks.loop(seconds=self.sweep_interval, reconnect=True)(
            _sweep_import_operations
        )
        self.background_task.start(self)

        # New slash commands only show up after an explicit sync.  The
        # test-suite stubs ``discord`` without an app command tree.
        tree = getattr(self, "tree", None)
        if tree is not None:  # pragma: no cover - exercised in integration
            await tree.sync()

        await super().setup_hook()

    async def on_ready(self) -> None:  # pragma: no cover - requires discord
        """Log a short confirmation once the bot connected successfully."""
        await self.change_presence(activity=discord.Game(name="Sunnyvale"))
        self.log.info(
            "Logged in as %s (%s)",
            self.user,
            self.user.id if self.user else "?",
        )


class _ServiceHolder:
    """Simple indirection so the service can be attached after creation."""

    service: ServerTemplateService | None = None


SERVICE_HOLDER = _ServiceHolder()


def attach_service(service: ServerTemplateService) -> None:
    """Attach a service so background tasks can access it."""
    SERVICE_HOLDER.service = service


async def _sweep_import_operations(bot: SunnyvaleBot) -> None:
    """Background task dropping import operations that finished long ago."""
    service = SERVICE_HOLDER.service
    if not service:
        return
    removed = service.cleanup_import_operations(bot.operation_max_age_ms)
    if removed:
        bot.log.info("Cleaned up %d import operations", removed)


__all__ = [
    "SunnyvaleBot",
    "attach_service",
    "_sweep_import_operations",
]
