import json

import pytest
from pydantic_ai.messages import (
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
from pydantic_ai.models.function import AgentInfo, DeltaToolCall, FunctionModel

from typstchat.backends import BackendEvent, BackendEventKind, ModelCall, ToolExchange
from typstchat.backends.pydanticai import PydanticAIBackend
from typstchat.contracts import ChatMessage, RenderTypstInput, ToolInvocation
from typstchat.errors import ModelStreamError


async def _aiter(items):
    for item in items:
        yield item


async def _drain(stream):
    return [event async for event in stream]


def _call(*contents, exchange=None):
    roles = ["user", "assistant"]
    messages = [
        ChatMessage(role=roles[i % 2], content=content) for i, content in enumerate(contents)
    ]
    return ModelCall(messages=messages, max_tokens=256, exchange=exchange)


@pytest.mark.asyncio
async def test_translate_text_and_tool_block():
    backend = PydanticAIBackend(model="test")
    events = [
        PartStartEvent(index=0, part=TextPart(content="Here")),
        PartDeltaEvent(index=0, delta=TextPartDelta(content_delta=" it is.")),
        PartStartEvent(
            index=1,
            part=ToolCallPart(tool_name="render_typst", args='{"code": ', tool_call_id="c1"),
        ),
        PartDeltaEvent(
            index=1,
            delta=ToolCallPartDelta(args_delta='"= Hi", "description": "d"}', tool_call_id="c1"),
        ),
    ]

    translated = await _drain(backend.translate(_aiter(events)))

    assert translated == [
        BackendEvent.text_delta("Here"),
        BackendEvent.text_delta(" it is."),
        BackendEvent.tool_start("render_typst", "c1"),
        BackendEvent.tool_input('{"code": '),
        BackendEvent.tool_input('"= Hi", "description": "d"}'),
        BackendEvent.tool_stop(),
    ]


@pytest.mark.asyncio
async def test_translate_closes_tool_block_when_next_part_starts():
    backend = PydanticAIBackend(model="test")
    events = [
        PartStartEvent(
            index=0,
            part=ToolCallPart(tool_name="render_typst", args={"code": "= A"}, tool_call_id="c1"),
        ),
        PartStartEvent(index=1, part=TextPart(content="after")),
    ]

    translated = await _drain(backend.translate(_aiter(events)))

    assert [e.kind for e in translated] == [
        BackendEventKind.TOOL_START,
        BackendEventKind.TOOL_INPUT,
        BackendEventKind.TOOL_STOP,
        BackendEventKind.TEXT,
    ]
    assert json.loads(translated[1].text) == {"code": "= A"}


def test_build_messages_places_system_prompt_first():
    backend = PydanticAIBackend(model="test", system_prompt="You write Typst.")

    messages = backend.build_messages(_call("Hi", "Hello!", "Make a poster"))

    assert isinstance(messages[0], ModelRequest)
    assert isinstance(messages[0].parts[0], SystemPromptPart)
    assert messages[0].parts[0].content == "You write Typst."
    assert isinstance(messages[0].parts[1], UserPromptPart)
    assert isinstance(messages[1], ModelResponse)
    assert messages[1].parts[0].content == "Hello!"
    assert messages[2].parts[0].content == "Make a poster"


def test_build_messages_appends_tool_exchange():
    backend = PydanticAIBackend(model="test")
    invocation = ToolInvocation(
        name="render_typst",
        call_id="toolu_01",
        input=RenderTypstInput(code="= Poster", description="poster"),
    )
    exchange = ToolExchange(
        assistant_text="Rendering.",
        invocation=invocation,
        result_text="Document rendered successfully",
    )

    messages = backend.build_messages(_call("Make a poster", exchange=exchange))

    response, result = messages[-2], messages[-1]
    assert isinstance(response, ModelResponse)
    assert response.parts[0].content == "Rendering."
    tool_call = response.parts[1]
    assert isinstance(tool_call, ToolCallPart)
    assert tool_call.tool_call_id == "toolu_01"
    assert tool_call.args == {"code": "= Poster", "description": "poster"}
    assert isinstance(result.parts[0], ToolReturnPart)
    assert result.parts[0].content == "Document rendered successfully"
    assert result.parts[0].tool_call_id == "toolu_01"


@pytest.mark.asyncio
async def test_stream_text_from_function_model():
    seen = []

    async def stream_fn(messages, info: AgentInfo):
        seen.append(info)
        yield "Hello"
        yield " world"

    backend = PydanticAIBackend(model=FunctionModel(stream_function=stream_fn))

    events = await _drain(backend.stream(_call("Hi")))

    assert "".join(e.text for e in events if e.kind is BackendEventKind.TEXT) == "Hello world"
    assert [tool.name for tool in seen[0].function_tools] == ["render_typst"]


@pytest.mark.asyncio
async def test_stream_tool_call_from_function_model():
    args = json.dumps({"code": "= Hi", "description": "greeting"})

    async def stream_fn(messages, info: AgentInfo):
        yield {0: DeltaToolCall(name="render_typst", json_args=args[:10], tool_call_id="c1")}
        yield {0: DeltaToolCall(json_args=args[10:])}

    backend = PydanticAIBackend(model=FunctionModel(stream_function=stream_fn))

    events = await _drain(backend.stream(_call("Hi")))

    kinds = [e.kind for e in events]
    assert kinds[0] is BackendEventKind.TOOL_START
    assert kinds[-1] is BackendEventKind.TOOL_STOP
    assert events[0].tool_name == "render_typst"
    raw = "".join(e.text for e in events if e.kind is BackendEventKind.TOOL_INPUT)
    assert json.loads(raw) == {"code": "= Hi", "description": "greeting"}


@pytest.mark.asyncio
async def test_stream_wraps_provider_errors():
    async def stream_fn(messages, info: AgentInfo):
        raise RuntimeError("upstream unavailable")
        yield "unreachable"

    backend = PydanticAIBackend(model=FunctionModel(stream_function=stream_fn))

    with pytest.raises(ModelStreamError, match="upstream unavailable"):
        await _drain(backend.stream(_call("Hi")))
