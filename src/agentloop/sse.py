"""Server-Sent Events adapter for streaming invocations."""

from __future__ import annotations

import json
import re
from collections.abc import AsyncIterator

from agentloop.events import (
    ContentEvent,
    DoneEvent,
    ErrorEvent,
    HistoryEvent,
    StreamEvent,
    TranscriptEvent,
)
from agentloop.message import dump_history


def format_sse(event: str, data: str) -> str:
    lines = "\n".join(f"data: {line}" for line in data.split("\n"))
    return f"event: {event}\n{lines}\n\n"


class ContentNewlineFilter:
    """Tidies whitespace in streamed content.

    Leading newlines are dropped while nothing visible has been sent since
    the start or since the last tool event, and runs of three or more
    newlines collapse to two.
    """

    def __init__(self) -> None:
        self.previous_content_empty = True
        self.last_event_type: str | None = None

    def content(self, chunk: str) -> str:
        if self.previous_content_empty or self.last_event_type == "tool_result":
            chunk = chunk.lstrip("\n")
        chunk = re.sub(r"\n{3,}", "\n\n", chunk)
        if chunk:
            self.previous_content_empty = chunk.strip() == ""
            self.last_event_type = "content"
        return chunk

    def event(self, event_type: str) -> None:
        self.last_event_type = event_type
        if event_type in ("tool_call", "tool_result"):
            self.previous_content_empty = True


async def sse_generator(
    event_stream: AsyncIterator[StreamEvent],
) -> AsyncIterator[str]:
    """Convert orchestrator events into SSE-formatted strings.

    Assistant transcript items are skipped: their text already went out
    as ``content`` events.
    """
    content_filter = ContentNewlineFilter()
    async for event in event_stream:
        if isinstance(event, ContentEvent):
            chunk = content_filter.content(event.text)
            if chunk:
                yield format_sse("content", chunk)
        elif isinstance(event, TranscriptEvent):
            if event.item.type == "assistant":
                continue
            content_filter.event(event.item.type)
            yield format_sse(event.item.type, json.dumps(event.item.to_wire(), default=str))
        elif isinstance(event, HistoryEvent):
            yield format_sse("history", json.dumps(dump_history(event.history)))
        elif isinstance(event, DoneEvent):
            yield format_sse("done", "true")
        elif isinstance(event, ErrorEvent):
            yield format_sse("error", json.dumps({"message": str(event.error)}))
