from __future__ import annotations

import re
from pathlib import Path

from warlynx.config import settings

_PLACEHOLDER = re.compile(r"\{([a-z_][a-z0-9_]*)\}")


class PromptLoader:
    """Loads prompt templates from .txt files and renders them with variables.

    Templates use ``{variable_name}`` placeholders.  Literal JSON braces in
    a template are left alone because only lowercase identifiers count as
    placeholders.
    """

    def __init__(self, templates_dir: str | Path | None = None):
        self._dir = Path(templates_dir or settings.prompts_dir)
        self._cache: dict[str, str] = {}

    def load(self, category: str, name: str) -> str:
        """Load raw template text.

        Example::

            loader.load("dungeon_master", "TURN_NARRATOR")
        """
        key = f"{category}/{name}"
        if key not in self._cache:
            path = self._dir / category / f"{name}.txt"
            self._cache[key] = path.read_text(encoding="utf-8")
        return self._cache[key]

    def render(self, category: str, name: str, **variables: object) -> str:
        """Load a template and substitute ``{var}`` placeholders in one pass.

        Unknown placeholders are left untouched, and substituted values are
        never re-scanned, so player text containing ``{...}`` stays literal.
        """
        template = self.load(category, name)

        def substitute(match: re.Match) -> str:
            key = match.group(1)
            if key not in variables:
                return match.group(0)
            return str(variables[key])

        return _PLACEHOLDER.sub(substitute, template)
