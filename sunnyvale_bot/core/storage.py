"""Simple JSON-backed storage for saved server templates."""

from __future__ import annotations

import json
from collections.abc import Iterable
from pathlib import Path

from .models import Template
from .schema import name_key


class TemplateStorage:
    """Persist named :class:`Template` documents.

    The storage is intentionally lightweight. Templates are kept in a single
    JSON file, rewritten on every mutation, keyed case-insensitively by
    template name; saving a template under an existing name replaces it.
    """

    def __init__(self, path: Path) -> None:
        """Initialise storage using JSON file at ``path``."""
        self.path = Path(path)
        self._templates: dict[str, Template] = {}
        if self.path.exists():
            self._load()
        else:
            self._save()

    # ------------------------------------------------------------------
    # Internal helpers
    def _load(self) -> None:
        data = json.loads(self.path.read_text(encoding="utf-8"))
        templates = (Template.model_validate(item) for item in data.get("templates", []))
        self._templates = {name_key(t.name): t for t in templates}

    def _save(self) -> None:
        data = {
            "templates": [
                t.model_dump(mode="json", by_alias=True) for t in self._templates.values()
            ]
        }
        self.path.write_text(json.dumps(data, indent=2), encoding="utf-8")

    # ------------------------------------------------------------------
    # Template operations
    def add_template(self, template: Template) -> None:
        """Persist ``template``, replacing any template with the same name."""
        self._templates[name_key(template.name)] = template
        self._save()

    def get_template(self, name: str) -> Template | None:
        """Retrieve a template by name."""
        return self._templates.get(name_key(name))

    def remove_template(self, name: str) -> bool:
        """Delete the template called ``name``; ``False`` if it did not exist."""
        if self._templates.pop(name_key(name), None) is None:
            return False
        self._save()
        return True

    def all_templates(self) -> Iterable[Template]:
        """Return an iterable of all stored templates."""
        return self._templates.values()
