"""Renderer factory and initialization."""

from __future__ import annotations

from typing import Optional

from ..config import TypstChatConfig, load_config
from .base import Renderer, RenderRequest, RenderResult
from .typst import TypstRenderer


def get_renderer(
    backend: Optional[str] = None, config: Optional[TypstChatConfig] = None
) -> Renderer:
    """Factory function to get the configured renderer."""

    config = config or load_config()
    backend = (backend or config.renderer.backend).lower()

    if backend == "typst":
        return TypstRenderer(
            binary=config.renderer.binary,
            temp_dir=config.renderer.temp_dir,
            timeout=config.renderer.timeout,
        )
    raise ValueError(f"Unsupported renderer backend: {backend}")


__all__ = ["Renderer", "RenderRequest", "RenderResult", "TypstRenderer", "get_renderer"]
