"""Model backend streaming through pydantic-ai's direct model API."""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterable, AsyncIterator, List, Optional

from pydantic_ai.direct import model_request_stream
from pydantic_ai.messages import (
    ModelMessage,
    ModelRequest,
    ModelResponse,
    PartDeltaEvent,
    PartStartEvent,
    SystemPromptPart,
    TextPart,
    TextPartDelta,
    ToolCallPart,
    ToolCallPartDelta,
    ToolReturnPart,
    UserPromptPart,
)
from pydantic_ai.models import Model, ModelRequestParameters
from pydantic_ai.settings import ModelSettings
from pydantic_ai.tools import ToolDefinition

from ..constants import DEFAULT_MODEL
from ..errors import ModelStreamError, TypstChatError
from ..tools import RENDER_TYPST_TOOL, SYSTEM_PROMPT, ToolSpec
from .base import BackendEvent, ModelBackend, ModelCall

logger = logging.getLogger(__name__)


def _args_fragment(args: Any) -> str:
    if args is None:
        return ""
    if isinstance(args, str):
        return args
    return json.dumps(args) if args else ""


class PydanticAIBackend(ModelBackend):
    """Stream responses from any model pydantic-ai supports.

    ``model`` is a pydantic-ai model instance or a name such as
    ``"anthropic:claude-sonnet-4-20250514"``.
    """

    def __init__(
        self,
        model: Model | str = DEFAULT_MODEL,
        system_prompt: str = SYSTEM_PROMPT,
        tool: ToolSpec = RENDER_TYPST_TOOL,
    ) -> None:
        self.model = model
        self.system_prompt = system_prompt
        self.tool = tool

    def _request_parameters(self) -> ModelRequestParameters:
        return ModelRequestParameters(
            function_tools=[
                ToolDefinition(
                    name=self.tool.name,
                    description=self.tool.description,
                    parameters_json_schema=self.tool.parameters,
                )
            ]
        )

    def build_messages(self, call: ModelCall) -> List[ModelMessage]:
        """Translate a model call into pydantic-ai message history."""
        messages: List[ModelMessage] = []
        for message in call.messages:
            if message.role == "user":
                messages.append(ModelRequest(parts=[UserPromptPart(content=message.content)]))
            else:
                messages.append(ModelResponse(parts=[TextPart(content=message.content)]))

        system = SystemPromptPart(content=self.system_prompt)
        if messages and isinstance(messages[0], ModelRequest):
            messages[0].parts.insert(0, system)
        else:
            messages.insert(0, ModelRequest(parts=[system]))

        if call.exchange is not None:
            invocation = call.exchange.invocation
            response_parts: List[Any] = []
            if call.exchange.assistant_text:
                response_parts.append(TextPart(content=call.exchange.assistant_text))
            response_parts.append(
                ToolCallPart(
                    tool_name=invocation.name,
                    args=invocation.input.model_dump(),
                    tool_call_id=invocation.call_id,
                )
            )
            messages.append(ModelResponse(parts=response_parts))
            messages.append(
                ModelRequest(
                    parts=[
                        ToolReturnPart(
                            tool_name=invocation.name,
                            content=call.exchange.result_text,
                            tool_call_id=invocation.call_id,
                        )
                    ]
                )
            )
        return messages

    async def stream(self, call: ModelCall) -> AsyncIterator[BackendEvent]:
        settings = ModelSettings(max_tokens=call.max_tokens)
        try:
            async with model_request_stream(
                self.model,
                self.build_messages(call),
                model_settings=settings,
                model_request_parameters=self._request_parameters(),
            ) as response:
                async for event in self.translate(response):
                    yield event
        except TypstChatError:
            raise
        except Exception as exc:
            raise ModelStreamError(f"Model stream failed: {exc}") from exc

    async def translate(self, events: AsyncIterable[Any]) -> AsyncIterator[BackendEvent]:
        """Map pydantic-ai response stream events onto backend events.

        A tool block is closed when a part with another index starts or the
        stream ends.
        """
        open_tool: Optional[int] = None
        async for event in events:
            if isinstance(event, PartStartEvent):
                if open_tool is not None and event.index != open_tool:
                    yield BackendEvent.tool_stop()
                    open_tool = None
                part = event.part
                if isinstance(part, TextPart):
                    if part.content:
                        yield BackendEvent.text_delta(part.content)
                elif isinstance(part, ToolCallPart):
                    open_tool = event.index
                    yield BackendEvent.tool_start(part.tool_name, part.tool_call_id)
                    fragment = _args_fragment(part.args)
                    if fragment:
                        yield BackendEvent.tool_input(fragment)
                else:
                    logger.debug(f"Ignoring {type(part).__name__} in model stream")
            elif isinstance(event, PartDeltaEvent):
                delta = event.delta
                if isinstance(delta, TextPartDelta):
                    if delta.content_delta:
                        yield BackendEvent.text_delta(delta.content_delta)
                elif isinstance(delta, ToolCallPartDelta) and event.index == open_tool:
                    fragment = _args_fragment(delta.args_delta)
                    if fragment:
                        yield BackendEvent.tool_input(fragment)
        if open_tool is not None:
            yield BackendEvent.tool_stop()
