"""Exception types shared across the bot.

Validation problems are never raised; they are returned as
:class:`~sunnyvale_bot.core.models.ValidationResult` data.  The classes here
cover failures of the outside world (the guild API) and are caught at step
boundaries by the import executor.
"""

from __future__ import annotations


class SunnyvaleError(Exception):
    """Base class for errors raised by Sunnyvale."""


class GuildAPIError(SunnyvaleError):
    """A guild mutation or read against the chat platform failed.

    Attributes
    ----------
    status:
        HTTP status code reported by the platform, or ``None`` when the
        request never produced a response (connection errors, timeouts).
    message:
        Human readable description suitable for a ``StepResult``.

    """

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status = status

    def __str__(self) -> str:
        if self.status is None:
            return self.message
        return f"{self.status}: {self.message}"
