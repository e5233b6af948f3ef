"""
Jinja2 template loader for prompts.

Templates live next to this module under `templates/`. Every name declared on
`Template` must have a file there; a missing one fails at import time rather
than in the middle of a conversation.
"""

import json
from functools import lru_cache
from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, StrictUndefined
from pydantic import BaseModel

from .templates import Template

TEMPLATES_DIR = Path(__file__).parent / "templates"


def _validate_templates():
    """Fails fast at import when a declared template has no file."""
    missing = [
        TEMPLATES_DIR / f"{value}.jinja2"
        for name, value in vars(Template).items()
        if not name.startswith("_") and not (TEMPLATES_DIR / f"{value}.jinja2").exists()
    ]
    if missing:
        raise FileNotFoundError(f"Template missing: {', '.join(str(path) for path in missing)}")


_validate_templates()


def pretty_json(value: Any) -> str:
    """Indented JSON for state blocks; pydantic models are dumped first."""
    if isinstance(value, BaseModel):
        value = value.model_dump(mode="json")
    return json.dumps(value, indent=2, default=str)


@lru_cache(maxsize=1)
def _get_environment() -> Environment:
    # Prompts are plain text: no autoescaping, and an unknown variable is an error
    env = Environment(
        loader=FileSystemLoader(TEMPLATES_DIR),
        autoescape=False,
        undefined=StrictUndefined,
        trim_blocks=True,
        lstrip_blocks=True,
    )
    env.filters["pretty_json"] = pretty_json
    return env


def render(template_name: str, **context) -> str:
    """Render `templates/<template_name>.jinja2`, stripped of outer whitespace."""
    template = _get_environment().get_template(f"{template_name}.jinja2")
    return template.render(**context).strip()
