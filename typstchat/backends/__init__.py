"""Model backend factory and initialization."""

from __future__ import annotations

from typing import Optional

from ..config import TypstChatConfig, load_config
from .base import BackendEvent, BackendEventKind, ModelBackend, ModelCall, ToolExchange
from .scripted import ScriptedBackend, scripted_text, scripted_tool_call


def get_backend(
    model: Optional[str] = None, config: Optional[TypstChatConfig] = None
) -> ModelBackend:
    """Factory function to get a backend for the configured model."""

    from .pydanticai import PydanticAIBackend

    config = config or load_config()
    return PydanticAIBackend(model=model or config.model.name)


__all__ = [
    "BackendEvent",
    "BackendEventKind",
    "ModelBackend",
    "ModelCall",
    "ScriptedBackend",
    "ToolExchange",
    "get_backend",
    "scripted_text",
    "scripted_tool_call",
]
