# prompt_renderer.py
"""Utilities for rendering generator prompts using Jinja2 templates."""

from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, StrictUndefined

PROMPTS_PATH = Path(__file__).parent / "prompts"
_env = Environment(
    loader=FileSystemLoader(PROMPTS_PATH),
    autoescape=False,
    undefined=StrictUndefined,
    keep_trailing_newline=True,
)


def _default_text(value: Any, placeholder: str = "(none)") -> str:
    """Render empty values as a placeholder so prompts never show blanks."""
    text = "" if value is None else str(value)
    return text if text.strip() else placeholder


_env.filters["or_none"] = _default_text


def render_prompt(template_name: str, context: dict[str, Any]) -> str:
    """Render a Jinja2 template from the prompts directory."""
    if not template_name.endswith(".j2"):
        template_name = f"{template_name}.j2"
    template = _env.get_template(template_name)
    return template.render(**context)
