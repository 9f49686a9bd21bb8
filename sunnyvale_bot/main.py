from __future__ import annotations

import asyncio
from pathlib import Path

from .bot import SunnyvaleBot, attach_service
from .commands.register import register_commands
from .config import load_settings
from .core.executor import ImportExecutor
from .core.service import ServerTemplateService
from .core.storage import TemplateStorage
from .logging_config import setup_logging


def main() -> int:
    log = setup_logging()
    settings = load_settings()
    if not settings.token:
        log.error(
            "DISCORD_BOT_TOKEN is not set. "
            "Export it in your environment before running."
        )
        return 2
    storage = TemplateStorage(Path(settings.data_path))
    service = ServerTemplateService(executor=ImportExecutor(settings.step_timeout))
    bot = SunnyvaleBot(
        sweep_interval=settings.sweep_interval,
        operation_max_age_ms=settings.operation_max_age_ms,
    )
    attach_service(service)
    register_commands(bot, service, storage, settings)

    async def runner():
        try:
            async with bot:
                await bot.start(settings.token)
        except KeyboardInterrupt:
            log.info("Shutting down...")
        return 0

    return asyncio.run(runner())


if __name__ == "__main__":
    raise SystemExit(main())
