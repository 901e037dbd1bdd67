from .default_prompts import SYSTEM_PROMPT
from .render_typst import RENDER_TYPST_TOOL, ToolSpec

__all__ = [
    "RENDER_TYPST_TOOL",
    "SYSTEM_PROMPT",
    "ToolSpec",
]
