"""Base emitter class for rendering templates.

This module defines the abstract base class for all template emitters,
providing a common interface for different target formats.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional

from ..synthesizer import Template


class TemplateEmitter(ABC):
    """Abstract base class for template emitters.

    Emitters only read the immutable Template, so several of them may render
    the same template concurrently.
    """

    format_name: str = ""
    file_extension: str = ".json"

    def __init__(self, config: Optional[Dict[str, Any]] = None) -> None:
        """Initialize emitter with optional configuration.

        Args:
            config: Optional emitter-specific configuration
        """
        self.config = config or {}

    @abstractmethod
    def emit(self, template: Template) -> Dict[str, Any]:
        """Convert a canonical template into this format's document."""
        raise NotImplementedError

    @abstractmethod
    def render(self, template: Template) -> str:
        """Serialize the emitted document."""
        raise NotImplementedError

    def write(self, template: Template, out_dir: Path, name: str = "template") -> Path:
        """Render ``template`` into ``out_dir`` and return the written path."""
        out_dir.mkdir(parents=True, exist_ok=True)
        path = out_dir / f"{name}{self.file_extension}"
        path.write_text(self.render(template) + "\n", encoding="utf-8")
        return path

    def get_format_name(self) -> str:
        return self.format_name
