"""Definition of the single tool the model may invoke."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict

from ..constants import RENDER_TOOL_NAME

RENDER_TOOL_DESCRIPTION = """Render Typst markup code to PDF or image. Use this tool to create documents, reports, academic papers, invoices, resumes, or any formatted content. Typst is a modern typesetting system similar to LaTeX but with simpler syntax.

Example Typst code:
```typst
#set page(paper: "a4")
#set text(font: "New Computer Modern", size: 11pt)

= My Document Title

This is a paragraph with *bold* and _italic_ text.

== Section One

#table(
  columns: (1fr, 1fr),
  [Header 1], [Header 2],
  [Cell 1], [Cell 2],
)
```

Always produce complete, valid Typst documents."""

RENDER_TOOL_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "code": {
            "type": "string",
            "description": "The Typst markup code to render",
        },
        "description": {
            "type": "string",
            "description": "Brief description of what this document contains",
        },
    },
    "required": ["code", "description"],
}


@dataclass(frozen=True)
class ToolSpec:
    """Provider-neutral description of a callable tool."""

    name: str
    description: str
    parameters: Dict[str, Any]


RENDER_TYPST_TOOL = ToolSpec(
    name=RENDER_TOOL_NAME,
    description=RENDER_TOOL_DESCRIPTION,
    parameters=RENDER_TOOL_SCHEMA,
)
