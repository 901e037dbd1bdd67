"""Exception types raised by typstchat components."""

from __future__ import annotations


class TypstChatError(Exception):
    """Base class for typstchat errors."""


class ModelStreamError(TypstChatError):
    """The model backend failed to deliver a well-formed stream."""


class ToolInputParseError(TypstChatError):
    """Buffered tool input could not be parsed into the tool's schema."""

    def __init__(self, message: str, raw_input: str = "") -> None:
        super().__init__(message)
        self.raw_input = raw_input


class SecondToolInvocationError(TypstChatError):
    """The model opened another tool block after the turn already used its one."""

    def __init__(self, tool_name: str, tool_call_id: str | None = None) -> None:
        super().__init__(
            f"Tool {tool_name} rejected: only one tool invocation is serviced per turn"
        )
        self.tool_name = tool_name
        self.tool_call_id = tool_call_id


class InvalidTurnTransition(TypstChatError):
    """A turn state machine transition was attempted out of order."""


class TurnInProgressError(TypstChatError):
    """Another turn is still running for the same conversation."""

    def __init__(self, conversation_id: str) -> None:
        super().__init__(f"A turn is already in progress for conversation {conversation_id}")
        self.conversation_id = conversation_id


class PersistenceError(TypstChatError):
    """Transcript store read or write failed."""
