"""Turn engine driving one conversation turn over a streaming model backend.

A turn persists the user message, streams the model response, services at
most one render tool invocation, issues at most one continuation call with
the tool result, persists the accumulated assistant text and terminates the
live event sequence with exactly one ``done`` or ``error`` event.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from contextlib import aclosing
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Set

from .backends.base import BackendEventKind, ModelBackend, ModelCall, ToolExchange
from .config import ModelConfig
from .constants import RENDER_TOOL_NAME, TITLE_MAX_LENGTH
from .contracts import (
    PDF_DATA_URL_PREFIX,
    PNG_DATA_URL_PREFIX,
    ChatMessage,
    RenderedArtifact,
    RenderTypstInput,
    StreamEvent,
    ToolInvocation,
    ToolOutcome,
)
from .errors import (
    InvalidTurnTransition,
    ModelStreamError,
    SecondToolInvocationError,
    ToolInputParseError,
    TurnInProgressError,
)
from .persistence import EntrySource, TranscriptStore
from .renderers import Renderer, RenderRequest

logger = logging.getLogger(__name__)


class TurnState(str, Enum):
    STREAMING = "streaming"
    TOOL_PENDING = "tool_pending"
    TOOL_EXECUTING = "tool_executing"
    CONTINUING = "continuing"
    COMPLETE = "complete"
    FAILED = "failed"


_TRANSITIONS: Dict[TurnState, Set[TurnState]] = {
    TurnState.STREAMING: {TurnState.TOOL_PENDING, TurnState.COMPLETE, TurnState.FAILED},
    TurnState.TOOL_PENDING: {TurnState.TOOL_EXECUTING, TurnState.FAILED},
    TurnState.TOOL_EXECUTING: {TurnState.CONTINUING, TurnState.FAILED},
    TurnState.CONTINUING: {TurnState.COMPLETE, TurnState.FAILED},
    TurnState.COMPLETE: set(),
    TurnState.FAILED: set(),
}

_TEXT_STATES = {TurnState.STREAMING, TurnState.TOOL_EXECUTING, TurnState.CONTINUING}


def derive_title(message: str) -> Optional[str]:
    """Title a conversation after the first line of its first message."""
    for line in message.splitlines():
        line = line.strip()
        if line:
            if len(line) > TITLE_MAX_LENGTH:
                return line[: TITLE_MAX_LENGTH - 3].rstrip() + "..."
            return line
    return None


class Turn:
    """State of one turn, owned by the engine driving it.

    Transitions follow ``Streaming -> ToolPending -> ToolExecuting ->
    Continuing -> Complete`` with ``Failed`` reachable from any live state.
    """

    def __init__(self, conversation_id: str) -> None:
        self.conversation_id = conversation_id
        self.state = TurnState.STREAMING
        self.invocation: Optional[ToolInvocation] = None
        self.outcome: Optional[ToolOutcome] = None
        self.tool_task: Optional[asyncio.Task] = None
        self.error: Optional[str] = None
        self._text: List[str] = []
        self._tool_name = ""
        self._tool_call_id = ""
        self._input_fragments: List[str] = []

    def _advance(self, target: TurnState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise InvalidTurnTransition(
                f"Cannot move turn from {self.state.value} to {target.value}"
            )
        logger.debug(
            f"Turn {self.conversation_id}: {self.state.value} -> {target.value}"
        )
        self.state = target

    @property
    def text(self) -> str:
        return "".join(self._text)

    @property
    def tool_call_id(self) -> str:
        return self._tool_call_id

    @property
    def tool_resolved(self) -> bool:
        return self.outcome is not None

    def append_text(self, text: str) -> None:
        if self.state not in _TEXT_STATES:
            raise InvalidTurnTransition(f"Text received while {self.state.value}")
        self._text.append(text)

    def open_tool(self, tool_name: str, tool_call_id: str) -> None:
        if self.state is TurnState.TOOL_PENDING:
            raise InvalidTurnTransition("Tool block opened inside another tool block")
        if self.invocation is not None:
            raise SecondToolInvocationError(tool_name, tool_call_id)
        self._advance(TurnState.TOOL_PENDING)
        self._tool_name = tool_name
        self._tool_call_id = tool_call_id or f"call_{uuid.uuid4().hex[:12]}"
        self._input_fragments = []

    def buffer_input(self, fragment: str) -> None:
        if self.state is not TurnState.TOOL_PENDING:
            raise InvalidTurnTransition(f"Tool input received while {self.state.value}")
        self._input_fragments.append(fragment)

    def close_tool(self) -> ToolInvocation:
        """Parse the buffered input and move to ``ToolExecuting``.

        Malformed input is replaced by an empty input instead of failing.
        """
        if self.state is not TurnState.TOOL_PENDING:
            raise InvalidTurnTransition(f"Tool block closed while {self.state.value}")
        raw = "".join(self._input_fragments)
        try:
            tool_input = RenderTypstInput.from_raw_json(raw)
        except ToolInputParseError as exc:
            logger.warning(
                f"Substituting empty input for {self._tool_name} in conversation_id={self.conversation_id}: {exc}"
            )
            tool_input = RenderTypstInput.empty()
        self.invocation = ToolInvocation(
            name=self._tool_name, call_id=self._tool_call_id, input=tool_input
        )
        self._advance(TurnState.TOOL_EXECUTING)
        return self.invocation

    def resolve(self, outcome: ToolOutcome) -> None:
        if self.state is not TurnState.TOOL_EXECUTING or self.outcome is not None:
            raise InvalidTurnTransition("Tool outcome recorded out of order")
        self.outcome = outcome

    def begin_continuation(self) -> ToolExchange:
        if self.invocation is None or self.outcome is None:
            raise InvalidTurnTransition("Continuation requires a resolved tool")
        self._advance(TurnState.CONTINUING)
        return ToolExchange(
            assistant_text=self.text,
            invocation=self.invocation,
            result_text=self.outcome.result_text(),
        )

    def complete(self) -> None:
        self._advance(TurnState.COMPLETE)

    def fail(self, error: str) -> None:
        self.error = error
        if self.state not in (TurnState.COMPLETE, TurnState.FAILED):
            self._advance(TurnState.FAILED)

    def assistant_payload(self) -> Dict[str, Any]:
        outcome = self.outcome
        return {
            "message": self.text,
            "hasArtifact": bool(outcome and outcome.success),
            "artifactCode": outcome.code if outcome else None,
            "artifactError": outcome.error if outcome else None,
        }


def _outcome_payload(outcome: ToolOutcome) -> Dict[str, Any]:
    """Payload of the ``tool_result`` entry.

    The entry is written before the PDF export runs, so it never holds
    ``pdfUrl``. The export is kept only on the conversation's cached artifact.
    """
    payload: Dict[str, Any] = {
        "tool": outcome.tool,
        "success": outcome.success,
        "pageCount": len(outcome.artifact.pages) if outcome.artifact else None,
        "error": outcome.error,
    }
    if outcome.artifact is not None:
        payload["artifact"] = {"code": outcome.artifact.code, "pages": outcome.artifact.pages}
    return payload


class TurnEngine:
    """Run conversation turns against injected store, backend and renderer.

    Only one turn may run per conversation at a time; different
    conversations share no mutable state.
    """

    def __init__(
        self,
        store: TranscriptStore,
        backend: ModelBackend,
        renderer: Renderer,
        model_config: Optional[ModelConfig] = None,
    ) -> None:
        self._store = store
        self._backend = backend
        self._renderer = renderer
        self._model_config = model_config or ModelConfig()
        self._locks: Dict[str, asyncio.Lock] = {}
        self._tool_tasks: Set[asyncio.Task] = set()

    @property
    def store(self) -> TranscriptStore:
        return self._store

    def is_busy(self, conversation_id: str) -> bool:
        lock = self._locks.get(conversation_id)
        return lock is not None and lock.locked()

    async def wait_for_tools(self) -> None:
        """Wait for tool executions still running after their turn was aborted."""
        if self._tool_tasks:
            await asyncio.gather(*list(self._tool_tasks), return_exceptions=True)

    async def run_turn(
        self,
        conversation_id: str,
        prior_turns: Sequence[ChatMessage],
        user_message: str,
    ) -> AsyncIterator[StreamEvent]:
        """Run one turn and yield its live events.

        Closing the iterator aborts the turn: no terminal event is emitted and
        no assistant entry is persisted, but a tool execution already in
        flight still persists its outcome.

        Raises:
            TurnInProgressError: If a turn is already running for
                ``conversation_id``.
        """
        lock = self._locks.setdefault(conversation_id, asyncio.Lock())
        if lock.locked():
            raise TurnInProgressError(conversation_id)
        await lock.acquire()
        turn = Turn(conversation_id)
        try:
            async with aclosing(self._drive(turn, list(prior_turns), user_message)) as events:
                async for event in events:
                    yield event
        finally:
            self._release(turn, lock)

    def _release(self, turn: Turn, lock: asyncio.Lock) -> None:
        task = turn.tool_task
        if task is not None and not task.done():
            logger.info(
                f"Turn aborted during tool execution for conversation_id={turn.conversation_id}; "
                "holding conversation until the outcome is persisted"
            )
            task.add_done_callback(lambda _: self._unlock(turn.conversation_id, lock))
        else:
            self._unlock(turn.conversation_id, lock)

    def _unlock(self, conversation_id: str, lock: asyncio.Lock) -> None:
        lock.release()
        if self._locks.get(conversation_id) is lock:
            del self._locks[conversation_id]

    async def _drive(
        self, turn: Turn, prior_turns: List[ChatMessage], user_message: str
    ) -> AsyncIterator[StreamEvent]:
        conversation_id = turn.conversation_id
        try:
            await self._store.append(
                conversation_id, EntrySource.USER, {"role": "user", "content": user_message}
            )
            if not prior_turns:
                await self._title_conversation(conversation_id, user_message)
            logger.info(f"Turn started for conversation_id={conversation_id}")
            yield StreamEvent.turn_started(conversation_id)

            history = [*prior_turns, ChatMessage(role="user", content=user_message)]
            first_call = ModelCall(messages=history, max_tokens=self._model_config.max_tokens)
            async with aclosing(self._consume(turn, first_call)) as events:
                async for event in events:
                    yield event

            if turn.tool_resolved:
                exchange = turn.begin_continuation()
                yield StreamEvent.continuation_started()
                follow_up = ModelCall(
                    messages=history,
                    max_tokens=self._model_config.continuation_max_tokens,
                    exchange=exchange,
                )
                async with aclosing(self._consume(turn, follow_up)) as events:
                    async for event in events:
                        yield event

            await self._store.append(
                conversation_id, EntrySource.ASSISTANT, turn.assistant_payload()
            )
            turn.complete()
        except Exception as exc:
            message = str(exc) or type(exc).__name__
            turn.fail(message)
            logger.error(f"Turn failed for conversation_id={conversation_id}: {message}")
            yield StreamEvent.turn_failed(message)
            return

        logger.info(f"Turn completed for conversation_id={conversation_id}")
        yield StreamEvent.turn_complete(turn.text)

    async def _title_conversation(self, conversation_id: str, user_message: str) -> None:
        title = derive_title(user_message)
        if title is None:
            return
        conversation = await self._store.get_conversation(conversation_id)
        if conversation is not None and not conversation.title:
            await self._store.set_title(conversation_id, title)

    async def _consume(self, turn: Turn, call: ModelCall) -> AsyncIterator[StreamEvent]:
        discarding = False
        async with aclosing(self._backend.stream(call)) as backend_events:
            async for item in backend_events:
                if item.kind is BackendEventKind.TEXT:
                    turn.append_text(item.text)
                    yield StreamEvent.text_delta(item.text)
                elif item.kind is BackendEventKind.TOOL_START:
                    try:
                        turn.open_tool(item.tool_name, item.tool_call_id)
                    except SecondToolInvocationError as exc:
                        logger.warning(f"{exc} (conversation_id={turn.conversation_id})")
                        discarding = True
                        continue
                    yield StreamEvent.tool_started(item.tool_name, turn.tool_call_id)
                elif item.kind is BackendEventKind.TOOL_INPUT:
                    if not discarding:
                        turn.buffer_input(item.text)
                elif item.kind is BackendEventKind.TOOL_STOP:
                    if discarding:
                        discarding = False
                        continue
                    invocation = turn.close_tool()
                    async with aclosing(self._execute_tool(turn, invocation)) as tool_events:
                        async for event in tool_events:
                            yield event
        if turn.state is TurnState.TOOL_PENDING:
            raise ModelStreamError("Model stream ended inside an unfinished tool block")

    async def _execute_tool(
        self, turn: Turn, invocation: ToolInvocation
    ) -> AsyncIterator[StreamEvent]:
        conversation_id = turn.conversation_id
        yield StreamEvent.tool_input_ready(invocation)
        await self._store.append(
            conversation_id,
            EntrySource.TOOL_CALL,
            {"tool": invocation.name, "input": invocation.input.model_dump()},
        )
        # Started before tool_executing is emitted so an abort at that point
        # still leads to a persisted outcome.
        task = asyncio.create_task(self._run_tool(conversation_id, invocation))
        self._tool_tasks.add(task)
        task.add_done_callback(self._tool_done)
        turn.tool_task = task
        yield StreamEvent.tool_executing(invocation.name)

        outcome = await asyncio.shield(task)
        turn.resolve(outcome)
        yield StreamEvent.tool_finished(outcome)

    def _tool_done(self, task: asyncio.Task) -> None:
        self._tool_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Tool execution failed: {task.exception()}")

    async def _run_tool(self, conversation_id: str, invocation: ToolInvocation) -> ToolOutcome:
        code = invocation.input.code
        if invocation.name != RENDER_TOOL_NAME:
            outcome = ToolOutcome(
                tool=invocation.name,
                code=code,
                success=False,
                error=f"Unknown tool: {invocation.name}",
            )
        else:
            logger.info(f"Rendering document for conversation_id={conversation_id}")
            result = await self._renderer.render(RenderRequest(code=code, format="png"))
            if result.success:
                pages = [f"{PNG_DATA_URL_PREFIX}{page}" for page in result.pages or []]
                outcome = ToolOutcome(
                    tool=invocation.name,
                    code=code,
                    success=True,
                    artifact=RenderedArtifact(code=code, pages=pages),
                )
            else:
                outcome = ToolOutcome(
                    tool=invocation.name,
                    code=code,
                    success=False,
                    error=result.error or "Unknown error",
                )

        await self._store.append(conversation_id, EntrySource.TOOL_RESULT, _outcome_payload(outcome))
        logger.info(
            f"Tool {invocation.name} finished for conversation_id={conversation_id} success={outcome.success}"
        )

        if outcome.success and outcome.artifact is not None:
            outcome.artifact.pdf_url = await self._export_pdf(conversation_id, code)
            await self._store.set_latest_artifact(
                conversation_id,
                code,
                outcome.artifact.pages,
                outcome.artifact.pdf_url,
            )
        return outcome

    async def _export_pdf(self, conversation_id: str, code: str) -> Optional[str]:
        result = await self._renderer.render(RenderRequest(code=code, format="pdf"))
        if result.success and result.data:
            return f"{PDF_DATA_URL_PREFIX}{result.data}"
        logger.warning(
            f"PDF export failed for conversation_id={conversation_id}: {result.error}"
        )
        return None
