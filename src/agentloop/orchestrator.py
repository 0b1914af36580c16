import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum

from agentloop.approval import ApprovalMode, ApprovalSettings, PermissionProvider, is_permitted
from agentloop.decoder import ContentDelta, DecodedToolCall, ToolCallDecoder
from agentloop.errors import (
    AgentLoopError,
    GenerationError,
    InvalidTransition,
    ModelStreamError,
    TurnLimitExceeded,
)
from agentloop.events import (
    ContentEvent,
    DecodeErrorEvent,
    DoneEvent,
    ErrorEvent,
    HistoryEvent,
    StreamEvent,
    TranscriptEvent,
)
from agentloop.history import TurnOutput, assemble_history
from agentloop.instrumentation import invocation_span, record_error, tool_span, turn_span
from agentloop.message import ConversationEntry, function_response_part, user_entry
from agentloop.session import SessionInvocation
from agentloop.streaming import ModelStreamSource
from agentloop.tools import ToolCallDescriptor, ToolExecution, ToolExecutor, ToolResult
from agentloop.transcript import AssistantItem, ToolCallItem, ToolResultItem, TranscriptItem

logger = logging.getLogger(__name__)


class TurnState(Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    AWAITING_TOOLS = "awaiting_tools"
    EXECUTING = "executing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class TurnSignal(Enum):
    START = "start"
    NO_TOOL_CALLS = "no_tool_calls"
    TOOL_CALLS = "tool_calls"
    EXECUTE = "execute"
    TOOLS_RESOLVED = "tools_resolved"
    CANCEL = "cancel"
    FAIL = "fail"


TERMINAL_STATES = frozenset({TurnState.COMPLETED, TurnState.CANCELLED, TurnState.FAILED})

_TRANSITIONS = {
    (TurnState.IDLE, TurnSignal.START): TurnState.STREAMING,
    (TurnState.STREAMING, TurnSignal.NO_TOOL_CALLS): TurnState.COMPLETED,
    (TurnState.STREAMING, TurnSignal.TOOL_CALLS): TurnState.AWAITING_TOOLS,
    (TurnState.AWAITING_TOOLS, TurnSignal.EXECUTE): TurnState.EXECUTING,
    (TurnState.EXECUTING, TurnSignal.TOOLS_RESOLVED): TurnState.STREAMING,
}


def transition(state: TurnState, signal: TurnSignal) -> TurnState:
    """Return the state reached by delivering ``signal`` in ``state``.

    Cancellation and failure are accepted from every non-terminal state.

    Raises:
        InvalidTransition: If ``state`` does not accept ``signal``.
    """
    if state not in TERMINAL_STATES:
        if signal is TurnSignal.CANCEL:
            return TurnState.CANCELLED
        if signal is TurnSignal.FAIL:
            return TurnState.FAILED
    try:
        return _TRANSITIONS[(state, signal)]
    except KeyError:
        raise InvalidTransition(state, signal) from None


@dataclass
class GenerationResult:
    """What an invocation hands back to its caller.

    ``history`` is the caller's prior history extended with this
    invocation's entries; resending it resumes the conversation.
    """

    prompt_id: str
    final_text: str
    transcript: list[TranscriptItem]
    history: tuple[ConversationEntry, ...]
    state: TurnState


@dataclass
class _Run:
    invocation: SessionInvocation
    state: TurnState = TurnState.IDLE
    turns: list[TurnOutput] = field(default_factory=list)
    transcript: list[TranscriptItem] = field(default_factory=list)
    final_text: str = ""

    def advance(self, signal: TurnSignal) -> None:
        new_state = transition(self.state, signal)
        logger.debug(f"[{self.invocation.prompt_id}] {self.state.value} -> {new_state.value}")
        self.state = new_state

    def history(self) -> tuple[ConversationEntry, ...]:
        return assemble_history(self.invocation.prior_history, self.turns)

    def record(self, item: TranscriptItem) -> TranscriptEvent:
        self.transcript.append(item)
        return TranscriptEvent(item=item)

    def result(self) -> GenerationResult:
        return GenerationResult(
            prompt_id=self.invocation.prompt_id,
            final_text=self.final_text,
            transcript=list(self.transcript),
            history=self.history(),
            state=self.state,
        )


class TurnOrchestrator:
    """Drives model turns and tool execution until the model stops asking
    for tools.

    Each turn streams the model's output through a
    :class:`~agentloop.decoder.ToolCallDecoder`.  Text is forwarded as it
    arrives; tool calls are queued and, once the turn's stream ends, run
    one at a time in the order they were discovered.  Their results become
    the next turn's input.

    ``run()`` drains ``iter()``.  ``iter()`` is the incremental entry point.

    Args:
        source: Model Stream Source used for every turn.
        executor: Tool Executor invoked for each decoded call.
        permission_provider: Consulted before each call when the approval
            mode is ``DEFAULT``.
        approval_settings: Shared approval flag overridden for the
            duration of each invocation.
        max_turns: Optional cap on model turns per invocation.
    """

    def __init__(
        self,
        source: ModelStreamSource,
        executor: ToolExecutor,
        *,
        permission_provider: PermissionProvider | None = None,
        approval_settings: ApprovalSettings | None = None,
        max_turns: int | None = None,
    ):
        self.source = source
        self.executor = executor
        self.permission_provider = permission_provider
        self.approval_settings = approval_settings
        self.max_turns = max_turns

    async def run(
        self,
        input: str | ConversationEntry,
        invocation: SessionInvocation | None = None,
        *,
        sink: Callable[[StreamEvent], None] | None = None,
        approval_mode: ApprovalMode = ApprovalMode.YOLO,
    ) -> GenerationResult:
        """Run an invocation to its end and return the buffered result.

        ``sink``, when given, receives every event at the moment it is
        produced.

        Raises:
            GenerationError: If the invocation failed. ``.result`` holds
                the partial transcript and history.
        """
        result: GenerationResult | None = None
        failure: ErrorEvent | None = None
        async for event in self.iter(input, invocation, approval_mode=approval_mode):
            if sink is not None:
                sink(event)
            if isinstance(event, DoneEvent):
                result = event.result
            elif isinstance(event, ErrorEvent):
                failure = event
        if failure is not None:
            raise GenerationError(str(failure.error), failure.result) from failure.error
        if result is None:
            raise RuntimeError("iter() ended without a terminal event")
        return result

    async def iter(
        self,
        input: str | ConversationEntry,
        invocation: SessionInvocation | None = None,
        *,
        approval_mode: ApprovalMode = ApprovalMode.YOLO,
    ) -> AsyncIterator[StreamEvent]:
        """Run an invocation, yielding events as they are produced."""
        invocation = invocation or SessionInvocation()
        token = invocation.cancellation
        run = _Run(invocation=invocation)
        entry = input if isinstance(input, ConversationEntry) else user_entry(input)

        async with self._approval_scope(approval_mode), invocation_span(invocation.prompt_id) as span:
            run.advance(TurnSignal.START)
            turn = TurnOutput(user_entry=entry)
            turn_number = 0
            try:
                while True:
                    turn_number += 1
                    if self.max_turns is not None and turn_number > self.max_turns:
                        raise TurnLimitExceeded(f"Maximum turns ({self.max_turns}) exceeded")
                    run.turns.append(turn)
                    if token.cancelled:
                        run.advance(TurnSignal.CANCEL)
                        break

                    queue: list[DecodedToolCall] = []
                    text = ""
                    completed = False
                    async with turn_span(turn_number):
                        decoder = ToolCallDecoder()
                        stream = None
                        try:
                            stream = self.source.stream(
                                run.history(), prompt_id=invocation.prompt_id, cancellation=token,
                            )
                            async for event in stream:
                                if token.cancelled:
                                    break
                                for item in decoder.feed(event):
                                    if isinstance(item, ContentDelta):
                                        text += item.text
                                        yield ContentEvent(text=item.text)
                                    elif item.error is not None:
                                        yield _skipped(item)
                                    else:
                                        self._enqueue(queue, item)
                            else:
                                completed = not token.cancelled
                        except Exception as e:
                            raise ModelStreamError(f"Model stream failed: {e}") from e
                        finally:
                            aclose = getattr(stream, "aclose", None)
                            if aclose is not None:
                                await aclose()

                    if completed:
                        for item in decoder.flush():
                            if isinstance(item, ContentDelta):
                                text += item.text
                                yield ContentEvent(text=item.text)
                            elif item.error is not None:
                                yield _skipped(item)
                            else:
                                self._enqueue(queue, item)

                    # Text already streamed is kept even when the turn is cancelled.
                    turn.text = text
                    if text:
                        run.final_text += text
                        yield run.record(AssistantItem(content=text))

                    if not completed:
                        logger.info(f"[{invocation.prompt_id}] Cancelled during turn {turn_number}")
                        run.advance(TurnSignal.CANCEL)
                        break

                    if not queue:
                        run.advance(TurnSignal.NO_TOOL_CALLS)
                        break

                    run.advance(TurnSignal.TOOL_CALLS)
                    run.advance(TurnSignal.EXECUTE)
                    for call in queue:
                        if token.cancelled:
                            break
                        yield run.record(ToolCallItem(
                            name=call.descriptor.name, arguments=_display_arguments(call.descriptor),
                        ))
                        result = await self._execute(call, token, approval_mode)
                        turn.tool_results.append(result)
                        yield run.record(_result_item(result))

                    if token.cancelled:
                        logger.info(f"[{invocation.prompt_id}] Cancelled after tool execution")
                        run.advance(TurnSignal.CANCEL)
                        break
                    run.advance(TurnSignal.TOOLS_RESOLVED)
                    turn = TurnOutput()
            except AgentLoopError as e:
                logger.error(f"[{invocation.prompt_id}] Invocation failed: {e}")
                record_error(span, e)
                run.advance(TurnSignal.FAIL)
                yield HistoryEvent(history=run.history())
                yield ErrorEvent(error=e, result=run.result())
                return

            yield HistoryEvent(history=run.history())
            yield DoneEvent(result=run.result())

    # ------------------------------------------------------------------
    # Tool execution
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _approval_scope(self, mode: ApprovalMode):
        if self.approval_settings is None:
            yield
            return
        async with self.approval_settings.override(mode):
            yield

    @staticmethod
    def _enqueue(queue: list[DecodedToolCall], call: DecodedToolCall) -> None:
        if call.descriptor.id is None:
            call.descriptor.id = str(len(queue))
        queue.append(call)

    async def _execute(
        self, call: DecodedToolCall, token, mode: ApprovalMode,
    ) -> ToolResult:
        descriptor = call.descriptor
        try:
            permitted = await is_permitted(descriptor, mode, self.permission_provider)
        except Exception as e:
            logger.error(f"Permission check for {descriptor.name} raised: {e}")
            permitted = False
        if not permitted:
            return _failed(descriptor, f"Permission denied for tool '{descriptor.name}'")

        async with tool_span(descriptor.name, descriptor.id) as span:
            try:
                execution = await self.executor(descriptor, token)
            except Exception as e:
                logger.error(f"Tool {descriptor.name} raised: {e}")
                execution = ToolExecution(error=f"Error calling {descriptor.name}: {e}")
            if execution.error is not None:
                logger.warning(f"Tool {descriptor.name} failed: {execution.error}")
                record_error(span, execution.error)

        if execution.error is not None:
            result = _failed(descriptor, execution.error)
            if execution.response_parts:
                result.response_parts = list(execution.response_parts)
            result.result_display = execution.result_display
            return result

        parts = execution.response_parts
        if not parts:
            parts = [function_response_part(
                descriptor.name, {"output": execution.result_display or ""}, descriptor.id,
            )]
        return ToolResult(
            call=descriptor,
            ok=True,
            response_parts=list(parts),
            result_display=execution.result_display,
        )


def _skipped(call: DecodedToolCall) -> DecodeErrorEvent:
    logger.info(
        f"Skipping tool call {call.descriptor.name or '<unnamed>'}: "
        f"{call.error.kind.value}: {call.error.message}"
    )
    return DecodeErrorEvent(
        name=call.descriptor.name, kind=call.error.kind.value, message=call.error.message,
    )


def _failed(descriptor: ToolCallDescriptor, message: str) -> ToolResult:
    return ToolResult(
        call=descriptor,
        ok=False,
        error=message,
        response_parts=[function_response_part(descriptor.name, {"error": message}, descriptor.id)],
    )


def _display_arguments(descriptor: ToolCallDescriptor):
    if descriptor.parsed_arguments is not None:
        return descriptor.parsed_arguments
    return descriptor.raw_arguments or None


def _result_item(result: ToolResult) -> ToolResultItem:
    if not result.ok:
        return ToolResultItem(name=result.name, ok=False, error=result.error)
    response = None
    if result.response_parts:
        function_response = result.response_parts[0].get("functionResponse")
        if function_response:
            response = function_response.get("response")
    return ToolResultItem(
        name=result.name,
        ok=True,
        response_text=result.result_display if isinstance(result.result_display, str) else None,
        response=response,
    )
