"""Streaming tool-call orchestration loop."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Sequence

from toolchat.conversations import Conversation, ConversationManager
from toolchat.errors import (
    CancellationRequested,
    ChatError,
    InvalidSubmission,
    ProviderError,
    ToolLoopExceeded,
    TurnInProgress,
    UnknownTool,
)
from toolchat.llm.base import FINISH_CANCELLED, ProviderAdapter, TurnHandle
from toolchat.models import (
    CallRequests,
    Message,
    MessageMetadata,
    MessageUpdated,
    Role,
    SamplingParams,
    Source,
    StreamEvent,
    TextDelta,
    ToolCallRequest,
    ToolCallResult,
    ToolDefinition,
    ToolStarted,
    TurnEvent,
    TurnFailed,
)
from toolchat.tools.base import failure
from toolchat.tools.registry import ToolRegistry

LOGGER = logging.getLogger(__name__)

TurnListener = Callable[[TurnEvent], Awaitable[None]]


class TurnState(str, Enum):
    IDLE = "idle"
    AWAITING_MODEL = "awaiting_model"
    EXECUTING_TOOLS = "executing_tools"
    FINALIZING = "finalizing"
    FAILED = "failed"


class TurnStatus(str, Enum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass(slots=True)
class TurnContext:
    """Working state of one in-flight turn; discarded when the turn ends."""

    conversation_id: str
    assistant_id: str
    offered: dict[str, ToolDefinition]
    started_at: float = field(default_factory=time.monotonic)
    state: TurnState = TurnState.IDLE
    text: list[str] = field(default_factory=list)
    pending: list[ToolCallRequest] = field(default_factory=list)
    results: list[ToolCallResult] = field(default_factory=list)
    arguments: dict[str, dict[str, Any]] = field(default_factory=dict)
    rounds: int = 0
    cancelled: bool = False
    stop: asyncio.Event = field(default_factory=asyncio.Event)
    handle: TurnHandle | None = None
    finish_reason: str | None = None


@dataclass(slots=True, frozen=True)
class TurnOutcome:
    conversation_id: str
    message: Message
    status: TurnStatus
    error: ChatError | None = None


class ConversationOrchestrator:
    """Drives a provider adapter through one turn at a time per conversation.

    idle -> awaiting_model -> (executing_tools -> awaiting_model)* -> finalizing -> idle,
    with failed reachable from any state. A failure ends the turn, never the
    conversation: the assistant message is always finalized, with an error
    attached when the turn did not complete.
    """

    def __init__(
        self,
        conversations: ConversationManager,
        registry: ToolRegistry,
        adapter: ProviderAdapter,
        system_prompt: str,
        sampling: SamplingParams | None = None,
        max_tool_rounds: int = 5,
        listener: TurnListener | None = None,
    ) -> None:
        self._conversations = conversations
        self._registry = registry
        self._adapter = adapter
        self._system_prompt = system_prompt
        self._sampling = sampling or SamplingParams()
        self._max_tool_rounds = max_tool_rounds
        self._listener = listener
        self._turns: dict[str, TurnContext] = {}

    @property
    def adapter(self) -> ProviderAdapter:
        return self._adapter

    def use_adapter(self, adapter: ProviderAdapter) -> None:
        """Switch providers; turns already running keep their own handle."""

        self._adapter = adapter

    def state(self, conversation_id: str) -> TurnState:
        ctx = self._turns.get(conversation_id)
        return ctx.state if ctx else TurnState.IDLE

    def is_busy(self, conversation_id: str) -> bool:
        return conversation_id in self._turns

    async def submit(self, text: str, conversation_id: str | None = None) -> TurnOutcome:
        """Run one turn to completion and return its finalized assistant message.

        Raises:
            InvalidSubmission: ``text`` is empty or whitespace.
            TurnInProgress: the conversation already has a turn in flight.
        """

        if not text or not text.strip():
            raise InvalidSubmission("Message is empty")
        if conversation_id is not None and conversation_id in self._turns:
            raise TurnInProgress(conversation_id)

        conversation = self._conversations.get_or_create(conversation_id)
        if conversation.id in self._turns:
            raise TurnInProgress(conversation.id)

        conversation.append(Message(role=Role.USER, content=text))
        assistant = conversation.append(
            Message(role=Role.ASSISTANT, content="", metadata=MessageMetadata(is_streaming=True))
        )
        offered = {d.function_name: d for d in self._registry.enabled_definitions()}
        ctx = TurnContext(conversation_id=conversation.id, assistant_id=assistant.id, offered=offered)
        self._turns[conversation.id] = ctx
        try:
            return await self._run_turn(conversation, ctx)
        finally:
            del self._turns[conversation.id]

    async def cancel(self, conversation_id: str) -> bool:
        """Stop the running turn; the partial answer is kept."""

        ctx = self._turns.get(conversation_id)
        if ctx is None:
            return False
        LOGGER.info("Cancelling turn for conversation %s", conversation_id)
        ctx.cancelled = True
        ctx.stop.set()
        if ctx.handle is not None:
            await ctx.handle.cancel()
        return True

    async def _run_turn(self, conversation: Conversation, ctx: TurnContext) -> TurnOutcome:
        await self._emit_message(conversation, ctx)
        ctx.state = TurnState.AWAITING_MODEL
        try:
            ctx.handle = await self._adapter.begin_turn(
                conversation.history.as_provider_context(),
                self._system_prompt,
                self._sampling,
                list(ctx.offered.values()),
            )
            while not ctx.cancelled:
                event = await self._next_event(ctx)
                if event is None:
                    break
                if isinstance(event, TextDelta):
                    ctx.text.append(event.text)
                    conversation.history.append_delta(ctx.assistant_id, event.text)
                    await self._emit_message(conversation, ctx)
                elif isinstance(event, CallRequests):
                    await self._execute_calls(conversation, ctx, event.requests)
                else:
                    ctx.finish_reason = event.finish_reason
                    if event.finish_reason == FINISH_CANCELLED:
                        ctx.cancelled = True
                    break
        except asyncio.CancelledError:
            ctx.cancelled = True
            await self._finalize(conversation, ctx, TurnStatus.CANCELLED)
            raise
        except ChatError as exc:
            return await self._fail(conversation, ctx, exc)
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("Unexpected error during turn for %s", conversation.id)
            return await self._fail(conversation, ctx, ProviderError(f"Unexpected error: {exc}", retryable=False))

        if ctx.cancelled:
            return await self._finalize(conversation, ctx, TurnStatus.CANCELLED, CancellationRequested("Turn cancelled"))
        return await self._finalize(conversation, ctx, TurnStatus.COMPLETED)

    async def _next_event(self, ctx: TurnContext) -> StreamEvent | None:
        """Pull the next event, giving up as soon as the turn is cancelled."""

        assert ctx.handle is not None
        pull = asyncio.ensure_future(ctx.handle.stream_next())
        stop = asyncio.ensure_future(ctx.stop.wait())
        try:
            await asyncio.wait({pull, stop}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stop.cancel()
            if ctx.cancelled or not pull.done():
                pull.cancel()
                await asyncio.gather(pull, return_exceptions=True)
        if ctx.cancelled:
            return None
        return pull.result()

    async def _execute_calls(
        self,
        conversation: Conversation,
        ctx: TurnContext,
        requests: Sequence[ToolCallRequest],
    ) -> None:
        ctx.rounds += 1
        if ctx.rounds > self._max_tool_rounds:
            raise ToolLoopExceeded(self._max_tool_rounds)

        ctx.state = TurnState.EXECUTING_TOOLS
        ctx.pending = list(requests)
        round_results: list[ToolCallResult] = []
        for request in requests:
            if ctx.cancelled:
                return
            await self._emit(ToolStarted(conversation.id, request.tool_name, dict(request.arguments)))
            result = await self._run_tool(conversation, ctx, request)
            round_results.append(result)
            ctx.results.append(result)
            ctx.pending.pop(0)
            conversation.history.update_in_place(ctx.assistant_id, **_tool_fields(ctx))
            await self._emit_message(conversation, ctx)

        if ctx.cancelled:
            return
        assert ctx.handle is not None
        await ctx.handle.submit_tool_results(round_results)
        ctx.state = TurnState.AWAITING_MODEL

    async def _run_tool(self, conversation: Conversation, ctx: TurnContext, request: ToolCallRequest) -> ToolCallResult:
        ctx.arguments[request.call_id] = dict(request.arguments)
        definition = ctx.offered.get(request.tool_name)
        if request.argument_error:
            payload = failure(f"Malformed tool arguments: {request.argument_error}")
        elif definition is None:
            payload = failure(str(UnknownTool(request.tool_name)))
        else:
            conversation.record_tool_use(definition.id)
            payload = await self._registry.execute(request.tool_name, request.arguments)
        LOGGER.info(
            "Tool %s (%s) finished: success=%s",
            request.tool_name,
            request.call_id,
            payload.get("success"),
        )
        return ToolCallResult(call_id=request.call_id, tool_name=request.tool_name, payload=payload)

    async def _finalize(
        self,
        conversation: Conversation,
        ctx: TurnContext,
        status: TurnStatus,
        error: ChatError | None = None,
    ) -> TurnOutcome:
        if ctx.state is not TurnState.FAILED:
            ctx.state = TurnState.FINALIZING
        fields: dict[str, Any] = {
            **_tool_fields(ctx),
            "thinking_time_ms": int((time.monotonic() - ctx.started_at) * 1000),
            "finish_reason": FINISH_CANCELLED if status is TurnStatus.CANCELLED else ctx.finish_reason,
        }
        if status is TurnStatus.FAILED and error is not None:
            fields["error"] = str(error)
        message = conversation.history.finalize(ctx.assistant_id, **fields)
        conversation.touch()
        self._conversations.save(conversation)
        LOGGER.info(
            "Turn %s for %s: %d chars, %d tool call(s)",
            status.value,
            conversation.id,
            len(message.content),
            len(ctx.results),
        )
        await self._emit_message(conversation, ctx)
        ctx.state = TurnState.IDLE
        return TurnOutcome(conversation.id, message.snapshot(), status, error)

    async def _fail(self, conversation: Conversation, ctx: TurnContext, error: ChatError) -> TurnOutcome:
        LOGGER.warning("Turn failed for %s in state %s: %s", conversation.id, ctx.state.value, error)
        ctx.state = TurnState.FAILED
        outcome = await self._finalize(conversation, ctx, TurnStatus.FAILED, error)
        await self._emit(TurnFailed(conversation.id, str(error)))
        return outcome

    async def _emit_message(self, conversation: Conversation, ctx: TurnContext) -> None:
        message = conversation.history.get(ctx.assistant_id)
        if message is not None:
            await self._emit(MessageUpdated(conversation.id, message.snapshot()))

    async def _emit(self, event: TurnEvent) -> None:
        if self._listener is not None:
            await self._listener(event)


def _tool_fields(ctx: TurnContext) -> dict[str, Any]:
    return {
        "tool_results": [
            {
                "call_id": r.call_id,
                "tool_name": r.tool_name,
                "arguments": ctx.arguments.get(r.call_id, {}),
                "result": r.payload,
            }
            for r in ctx.results
        ],
        "tool_name": ctx.results[0].tool_name if ctx.results else None,
        "sources": _collect_sources(ctx.results),
    }


def _collect_sources(results: Sequence[ToolCallResult]) -> list[Source]:
    sources: list[Source] = []
    seen: set[str] = set()
    for result in results:
        if not result.succeeded:
            continue
        for item in result.payload.get("results") or []:
            url = item.get("url") if isinstance(item, dict) else None
            if not url or url in seen:
                continue
            seen.add(url)
            sources.append(
                Source(
                    url=url,
                    title=item.get("title") or url,
                    snippet=(item.get("content") or "")[:200],
                    score=item.get("score"),
                )
            )
    return sources
