"""Streaming primitives for model output.

A Model Stream Source yields :class:`ModelStreamEvent` objects: either a
text delta (``type="content"``) or a provider-native tool call
(``type="tool_call_request"``).  OpenAI-compatible providers deliver
native tool calls as fragments keyed by index; the
:class:`ToolCallAccumulator` reassembles them before they are surfaced.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any, Literal, Protocol

from agentloop.cancellation import CancellationToken
from agentloop.message import ConversationEntry


@dataclass
class NativeToolCall:
    """A tool call delivered as a structured provider event.

    ``arguments`` is either already-parsed JSON (a dict) or the raw
    argument text; raw text is parsed by the decoder.
    """

    name: str
    arguments: Any = None
    id: str | None = None


@dataclass
class ModelStreamEvent:
    type: Literal["content", "tool_call_request"]
    value: str | NativeToolCall

    @classmethod
    def content(cls, text: str) -> ModelStreamEvent:
        return cls(type="content", value=text)

    @classmethod
    def tool_call(
        cls, name: str, arguments: Any = None, call_id: str | None = None,
    ) -> ModelStreamEvent:
        return cls(
            type="tool_call_request",
            value=NativeToolCall(name=name, arguments=arguments, id=call_id),
        )


class ModelStreamSource(Protocol):
    """Collaborator that streams one model turn.

    ``history`` is the full conversation so far; its last entry is the
    input of the turn being opened.
    """

    def stream(
        self,
        history: tuple[ConversationEntry, ...],
        *,
        prompt_id: str,
        cancellation: CancellationToken,
    ) -> AsyncIterator[ModelStreamEvent]: ...


@dataclass
class ToolCallFragment:
    """A fragment of a tool call from a streaming chunk."""

    index: int
    call_id: str | None = None
    name: str | None = None
    arguments_delta: str | None = None


@dataclass
class ToolCallAssembly:
    """A tool call reassembled from fragments."""

    id: str = ""
    name: str = ""
    arguments: str = ""


class ToolCallAccumulator:
    """Assembles complete tool calls from streaming fragments."""

    def __init__(self) -> None:
        self._pending: dict[int, ToolCallAssembly] = {}

    def feed(self, fragment: ToolCallFragment) -> None:
        if fragment.index not in self._pending:
            self._pending[fragment.index] = ToolCallAssembly()
        tc = self._pending[fragment.index]
        if fragment.call_id is not None:
            tc.id = fragment.call_id
        if fragment.name is not None:
            tc.name = fragment.name
        if fragment.arguments_delta is not None:
            tc.arguments += fragment.arguments_delta

    def finalize(self) -> list[ToolCallAssembly]:
        """Return completed tool calls in index order."""
        return [self._pending[i] for i in sorted(self._pending)]
