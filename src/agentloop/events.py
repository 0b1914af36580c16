"""Events emitted while an invocation runs.

In incremental mode these are pushed in the order they are produced:
any number of :class:`ContentEvent`, :class:`TranscriptEvent` and
:class:`DecodeErrorEvent`, then one :class:`HistoryEvent`, then exactly
one :class:`DoneEvent` or :class:`ErrorEvent`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from agentloop.message import ConversationEntry
from agentloop.transcript import TranscriptItem


@dataclass
class StreamEvent:
    """Base for all streaming events."""


@dataclass
class ContentEvent(StreamEvent):
    """Text delta from the model, forwarded as soon as it is decoded."""

    text: str = ""


@dataclass
class TranscriptEvent(StreamEvent):
    item: TranscriptItem


@dataclass
class DecodeErrorEvent(StreamEvent):
    """A malformed tool call.  It is skipped and never reaches the
    transcript or the history."""

    name: str
    kind: str
    message: str


@dataclass
class HistoryEvent(StreamEvent):
    history: tuple[ConversationEntry, ...] = ()


@dataclass
class DoneEvent(StreamEvent):
    """Terminal event of a completed or cancelled invocation."""

    result: Any = None


@dataclass
class ErrorEvent(StreamEvent):
    """Terminal event of a failed invocation."""

    error: BaseException
    result: Any = None
