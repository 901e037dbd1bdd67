"""typstchat: streaming chat orchestration for Typst document generation."""

from .contracts import ChatMessage, RenderedArtifact, StreamEvent, StreamEventKind
from .encoder import encode_event, encode_stream
from .backends import get_backend
from .persistence import get_store
from .renderers import get_renderer
from .replay import build_transcript
from .turn import TurnEngine

__version__ = "0.1.0"
__all__ = [
    "ChatMessage",
    "RenderedArtifact",
    "StreamEvent",
    "StreamEventKind",
    "TurnEngine",
    "build_transcript",
    "encode_event",
    "encode_stream",
    "get_backend",
    "get_renderer",
    "get_store",
]
