from .loader import render
from .system_prompt import PromptOptions, build_step_warning, build_system_prompt, render_system_prompt
from .templates import Template

__all__ = [
    "PromptOptions",
    "Template",
    "build_step_warning",
    "build_system_prompt",
    "render",
    "render_system_prompt",
]
