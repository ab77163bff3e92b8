"""
captionline.llm.templates - Prompt template loading and rendering.

Uses Jinja2 to render the translation prompts. Templates ship inside the
package; a prompts directory from the config can override them by name.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from jinja2 import ChoiceLoader, Environment, FileSystemLoader, Template

from captionline.language import language_name

PACKAGE_PROMPTS_DIR = Path(__file__).resolve().parent.parent / "prompts"

SYSTEM_TEMPLATE = "translate_system.txt"
BATCH_TEMPLATE = "translate_batch.txt"


class PromptTemplateManager:
    """Manages loading and rendering of prompt templates."""

    def __init__(self, prompts_dir: Path | None = None) -> None:
        self.prompts_dir = prompts_dir
        search = [str(PACKAGE_PROMPTS_DIR)]
        if prompts_dir is not None:
            search.insert(0, str(prompts_dir))
        self.env = Environment(
            loader=ChoiceLoader([FileSystemLoader(path) for path in search]),
            autoescape=False,
            keep_trailing_newline=False,
        )
        self._cache: dict[str, Template] = {}

    def get_template(self, name: str) -> Template:
        if name not in self._cache:
            self._cache[name] = self.env.get_template(name)
        return self._cache[name]

    def render(self, template_name: str, variables: dict[str, Any]) -> str:
        return self.get_template(template_name).render(**variables).strip()

    def translation_prompts(
        self, lines: list[str], source_language: str, target_language: str
    ) -> tuple[str, str]:
        """Render the (system instruction, user prompt) pair for one batch."""
        variables = {
            "lines": lines,
            "count": len(lines),
            "source_name": language_name(source_language),
            "target_name": language_name(target_language),
        }
        return self.render(SYSTEM_TEMPLATE, variables), self.render(BATCH_TEMPLATE, variables)
