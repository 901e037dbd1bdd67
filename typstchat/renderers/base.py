"""Base renderer interface for compiling document markup."""

from __future__ import annotations

import abc
from typing import List, Literal, Optional

from pydantic import BaseModel

RenderFormat = Literal["pdf", "png", "svg"]

MIME_TYPES = {
    "pdf": "application/pdf",
    "png": "image/png",
    "svg": "image/svg+xml",
}


class RenderRequest(BaseModel):
    code: str
    format: RenderFormat = "png"


class RenderResult(BaseModel):
    """Outcome of one render call.

    Paged formats (png, svg) fill ``pages`` in page order; single file formats
    (pdf) fill ``data``. Binary output is base64 encoded.
    """

    success: bool
    pages: Optional[List[str]] = None
    data: Optional[str] = None
    mime_type: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def failure(cls, error: str) -> "RenderResult":
        return cls(success=False, error=error)


class Renderer(metaclass=abc.ABCMeta):
    """Abstract document renderer.

    Implementations never raise for document problems; every failure is
    reported as ``RenderResult(success=False)``.
    """

    @abc.abstractmethod
    async def render(self, request: RenderRequest) -> RenderResult:
        """Compile ``request.code`` into ``request.format``."""
        raise NotImplementedError
