"""Server template engine for the Sunnyvale moderation bot.

The main data models, the service and the template storage are re-exported
here so consumers can import them straight from ``sunnyvale_bot``.
"""

from .core.models import ImportPlan, ImportStrategy, Template, ValidationResult
from .core.service import ImportOutcome, ServerTemplateService
from .core.storage import TemplateStorage

__all__ = [
    "ImportOutcome",
    "ImportPlan",
    "ImportStrategy",
    "ServerTemplateService",
    "Template",
    "TemplateStorage",
    "ValidationResult",
]
