"""Emitter for the canonical template document itself."""

from typing import Any, Dict

from ..synthesizer import Template
from . import register_emitter
from .base import TemplateEmitter


class CanonicalEmitter(TemplateEmitter):
    """Writes the canonical document as sorted JSON.

    Config:
        indent: Indentation width, or None for the compact byte-stable form
    """

    format_name = "canonical"

    def emit(self, template: Template) -> Dict[str, Any]:
        return template.document

    def render(self, template: Template) -> str:
        return template.to_json(indent=self.config.get("indent", 2))


register_emitter("canonical", CanonicalEmitter)
