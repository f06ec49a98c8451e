"""Jinja2 rendering for the configuration files bodhilab writes."""
from pathlib import Path
from typing import Optional

from jinja2 import Environment, FileSystemLoader, StrictUndefined, TemplateNotFound


class TemplateRenderer:
    """Renders bundled ``*.j2`` templates (unbound.conf, setupVars.conf, cron scripts...)."""

    def __init__(self, templates_dir: Optional[Path] = None):
        """Initialize renderer.

        Args:
            templates_dir: Path to templates directory. Defaults to bodhilab/templates/
        """
        if templates_dir is None:
            # Renderer is in bodhilab/core/, templates are in bodhilab/templates/
            templates_dir = Path(__file__).parent.parent / "templates"
        self.templates_dir = Path(templates_dir)
        self.env = Environment(
            loader=FileSystemLoader(str(self.templates_dir)),
            autoescape=False,
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=True,
            undefined=StrictUndefined,
        )

    def render(self, name: str, **context) -> str:
        """Render ``<name>.j2`` with the given context.

        Raises:
            FileNotFoundError: If the template doesn't exist
        """
        try:
            template = self.env.get_template(f"{name}.j2")
        except TemplateNotFound:
            raise FileNotFoundError(
                f"Template '{name}' not found in {self.templates_dir}"
            ) from None
        return template.render(**context)

    def write(self, name: str, dest: Path, mode: Optional[int] = None, **context) -> Path:
        """Render a template straight to ``dest``."""
        dest = Path(dest)
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_text(self.render(name, **context))
        if mode is not None:
            dest.chmod(mode)
        return dest


_renderer: Optional[TemplateRenderer] = None


def get_renderer() -> TemplateRenderer:
    """Return the shared renderer for bundled templates."""
    global _renderer
    if _renderer is None:
        _renderer = TemplateRenderer()
    return _renderer
