"""Incremental tool-call decoder.

Models can request tool calls two ways: as structured provider events,
or inline in their text output using a delimiter microformat::

    <|tool_calls_section_begin|>
    <|tool_call_begin|>functions.list_directory:0<|tool_call_argument_begin|>{"path": "/tmp"}<|tool_call_end|>
    <|tool_calls_section_end|>

:class:`ToolCallDecoder` accepts both and produces one ordered list of
:class:`ContentDelta` and :class:`DecodedToolCall` items.  Text chunks may
split sentinels and argument payloads anywhere; unconsumed input is kept
in a :class:`ParserState` and re-scanned with the next chunk.  Decoding
never raises: malformed calls come back as items carrying a
:class:`DecodeError`.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol, Union

from agentloop.streaming import ModelStreamEvent, NativeToolCall
from agentloop.tools import ToolCallDescriptor

logger = logging.getLogger(__name__)

SECTION_BEGIN = "<|tool_calls_section_begin|>"
CALL_BEGIN = "<|tool_call_begin|>"
ARGUMENT_BEGIN = "<|tool_call_argument_begin|>"
CALL_END = "<|tool_call_end|>"
SECTION_END = "<|tool_calls_section_end|>"

SENTINELS = (SECTION_BEGIN, CALL_BEGIN, ARGUMENT_BEGIN, CALL_END, SECTION_END)
_LONGEST_SENTINEL = max(len(s) for s in SENTINELS)


class Phase(Enum):
    OUTSIDE = "outside"
    IN_SECTION = "in_section"
    IN_CALL = "in_call"
    IN_ARGUMENT = "in_argument"


class DecodeErrorKind(str, Enum):
    EMPTY_ARGUMENTS = "empty-arguments"
    INVALID_ARGUMENTS = "invalid-arguments"
    MISSING_FUNCTION_NAME = "missing-function-name"
    INCOMPLETE_CALL = "incomplete-call"


@dataclass
class DecodeError:
    kind: DecodeErrorKind
    message: str


@dataclass
class ContentDelta:
    text: str


@dataclass
class DecodedToolCall:
    """A completed call, possibly paired with the error that spoiled it."""

    descriptor: ToolCallDescriptor
    error: DecodeError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


DecodedItem = Union[ContentDelta, DecodedToolCall]


@dataclass
class ParserState:
    """Everything the scanner carries from one chunk to the next.

    Args:
        content_buffer: Input not yet consumed; prefixed onto the next chunk.
        section_open: A section-begin sentinel was seen and not yet closed.
        current_call_buffer: Call specifier of the call whose arguments are
            being read.
        phase: Where the scanner is in the microformat.
    """

    content_buffer: str = ""
    section_open: bool = False
    current_call_buffer: str = ""
    phase: Phase = Phase.OUTSIDE

    def reset(self) -> None:
        self.content_buffer = ""
        self.section_open = False
        self.current_call_buffer = ""
        self.phase = Phase.OUTSIDE


def contains_tool_call_markers(text: str) -> bool:
    return any(s in text for s in SENTINELS)


def parse_call_specifier(specifier: str) -> tuple[str, str | None]:
    """Split ``namespace(.namespace)*.callable[:id]`` into name and id.

    >>> parse_call_specifier("functions.list_directory:0")
    ('list_directory', '0')
    >>> parse_call_specifier("functions.read_file")
    ('read_file', None)
    """
    path, _, call_id = specifier.strip().partition(":")
    name = path.strip().rsplit(".", 1)[-1].strip()
    return name, (call_id.strip() or None)


def _strip_surplus_braces(text: str) -> str | None:
    extra = text.count("}") - text.count("{")
    if "}}" in text and extra > 0 and text.endswith("}" * extra):
        return text[:-extra]
    return None


def parse_arguments(raw: str) -> tuple[Any, DecodeError | None]:
    """Parse a complete argument payload as JSON.

    A payload with surplus closing braces (``{"a": 1}}``) is repaired once
    before it is reported invalid.
    """
    text = raw.strip()
    if not text:
        return None, DecodeError(
            DecodeErrorKind.EMPTY_ARGUMENTS, "Tool call arguments cannot be empty",
        )
    try:
        return json.loads(text), None
    except json.JSONDecodeError as e:
        repaired = _strip_surplus_braces(text)
        if repaired is not None:
            try:
                return json.loads(repaired), None
            except json.JSONDecodeError:
                pass
        return None, DecodeError(
            DecodeErrorKind.INVALID_ARGUMENTS,
            f"Failed to parse tool call arguments: {e}",
        )


def _find_sentinel(text: str, start: int) -> tuple[int, str] | None:
    best: tuple[int, str] | None = None
    for sentinel in SENTINELS:
        index = text.find(sentinel, start)
        if index != -1 and (best is None or index < best[0]):
            best = (index, sentinel)
    return best


def _partial_sentinel_length(text: str) -> int:
    """Length of the longest suffix of ``text`` that could begin a sentinel."""
    for n in range(min(len(text), _LONGEST_SENTINEL - 1), 0, -1):
        suffix = text[-n:]
        if any(s.startswith(suffix) for s in SENTINELS):
            return n
    return 0


def _decode_call(specifier: str, payload: str) -> DecodedToolCall:
    name, call_id = parse_call_specifier(specifier)
    descriptor = ToolCallDescriptor(name=name, raw_arguments=payload, id=call_id)
    if not name:
        error = DecodeError(
            DecodeErrorKind.MISSING_FUNCTION_NAME,
            f"Tool call missing function name: {specifier!r}",
        )
    else:
        descriptor.parsed_arguments, error = parse_arguments(payload)
    if error is not None:
        logger.warning(f"Dropping tool call {name or '<unnamed>'}: {error.message}")
    return DecodedToolCall(descriptor=descriptor, error=error)


class DecoderPath(Protocol):
    def accepts(self, item: Any) -> bool: ...

    def feed(self, item: Any) -> list[DecodedItem]: ...

    def flush(self) -> list[DecodedItem]: ...


class NativeToolCallPassthrough:
    """Turns provider-native tool-call events into decoded items."""

    def accepts(self, item: Any) -> bool:
        return isinstance(item, NativeToolCall)

    def feed(self, item: NativeToolCall) -> list[DecodedItem]:
        descriptor = ToolCallDescriptor(name=item.name or "", id=item.id)
        arguments = item.arguments
        error = None
        if not descriptor.name:
            error = DecodeError(
                DecodeErrorKind.MISSING_FUNCTION_NAME, "Tool call missing function name",
            )
        elif arguments is None or (isinstance(arguments, str) and not arguments.strip()):
            # Structured events omit arguments for parameterless tools.
            descriptor.raw_arguments = "{}"
            descriptor.parsed_arguments = {}
        elif isinstance(arguments, str):
            descriptor.raw_arguments = arguments
            descriptor.parsed_arguments, error = parse_arguments(arguments)
        else:
            descriptor.raw_arguments = json.dumps(arguments)
            descriptor.parsed_arguments = arguments
        if error is not None:
            logger.warning(f"Invalid native tool call {descriptor.name or '<unnamed>'}: {error.message}")
        return [DecodedToolCall(descriptor=descriptor, error=error)]

    def flush(self) -> list[DecodedItem]:
        return []


class InlineToolCallScanner:
    """Scans text deltas for the inline tool-call microformat."""

    def __init__(self, state: ParserState | None = None):
        self.state = state or ParserState()

    def accepts(self, item: Any) -> bool:
        return isinstance(item, str)

    def feed(self, chunk: str) -> list[DecodedItem]:
        state = self.state
        items: list[DecodedItem] = []
        text = state.content_buffer + chunk
        pos = 0

        while pos <= len(text):
            if state.phase is Phase.IN_ARGUMENT:
                end = text.find(CALL_END, pos)
                if end == -1:
                    break
                items.append(_decode_call(state.current_call_buffer, text[pos:end]))
                pos = end + len(CALL_END)
                self._close_call()
                continue

            found = _find_sentinel(text, pos)
            if found is None:
                if state.phase is Phase.OUTSIDE:
                    end = len(text) - _partial_sentinel_length(text[pos:])
                    self._emit(items, text[pos:end])
                    pos = end
                elif state.phase is Phase.IN_SECTION:
                    pos = len(text) - _partial_sentinel_length(text[pos:])
                break

            index, sentinel = found
            before = text[pos:index]
            pos = index + len(sentinel)

            if state.phase is Phase.OUTSIDE:
                self._emit(items, before)
                self._on_outside(sentinel)
            elif state.phase is Phase.IN_SECTION:
                self._on_in_section(sentinel)
            else:
                self._on_in_call(sentinel, before, items)

        state.content_buffer = text[pos:]
        return items

    def flush(self) -> list[DecodedItem]:
        """Resolve whatever is buffered at end of stream."""
        state = self.state
        items: list[DecodedItem] = []
        pending = state.content_buffer
        if state.phase is Phase.OUTSIDE:
            self._emit(items, pending)
        elif state.phase is Phase.IN_CALL:
            items.append(self._incomplete(pending, ""))
        elif state.phase is Phase.IN_ARGUMENT:
            # Only a call-end closes a call.
            items.append(self._incomplete(state.current_call_buffer, pending))
        state.reset()
        return items

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _on_outside(self, sentinel: str) -> None:
        if sentinel == SECTION_BEGIN:
            self.state.section_open = True
            self.state.phase = Phase.IN_SECTION
        elif sentinel == CALL_BEGIN:
            self.state.phase = Phase.IN_CALL
        else:
            logger.debug(f"Ignoring stray {sentinel} outside a tool call section")

    def _on_in_section(self, sentinel: str) -> None:
        if sentinel == CALL_BEGIN:
            self.state.phase = Phase.IN_CALL
        elif sentinel == SECTION_END:
            self.state.section_open = False
            self.state.phase = Phase.OUTSIDE
        else:
            logger.debug(f"Ignoring stray {sentinel} between tool calls")

    def _on_in_call(self, sentinel: str, specifier: str, items: list[DecodedItem]) -> None:
        state = self.state
        if sentinel == ARGUMENT_BEGIN:
            state.current_call_buffer = specifier
            state.phase = Phase.IN_ARGUMENT
        elif sentinel == CALL_END:
            items.append(_decode_call(specifier, ""))
            self._close_call()
        else:
            logger.warning(f"Dropping malformed tool call {specifier.strip()!r}: unexpected {sentinel}")
            state.current_call_buffer = ""
            if sentinel == CALL_BEGIN:
                state.phase = Phase.IN_CALL
            elif sentinel == SECTION_BEGIN:
                state.section_open = True
                state.phase = Phase.IN_SECTION
            else:
                state.section_open = False
                state.phase = Phase.OUTSIDE

    def _close_call(self) -> None:
        self.state.current_call_buffer = ""
        self.state.phase = Phase.IN_SECTION if self.state.section_open else Phase.OUTSIDE

    @staticmethod
    def _emit(items: list[DecodedItem], text: str) -> None:
        if text:
            items.append(ContentDelta(text=text))

    @staticmethod
    def _incomplete(specifier: str, payload: str) -> DecodedToolCall:
        name, call_id = parse_call_specifier(specifier)
        logger.warning(f"Tool call {name or '<unnamed>'} was cut off at end of stream")
        return DecodedToolCall(
            descriptor=ToolCallDescriptor(name=name, raw_arguments=payload, id=call_id),
            error=DecodeError(
                DecodeErrorKind.INCOMPLETE_CALL, "Stream ended before the tool call was closed",
            ),
        )


class ToolCallDecoder:
    """Unified decoder over native tool-call events and inline text.

    The path is chosen by the shape of each incoming item: text goes to the
    :class:`InlineToolCallScanner`, :class:`NativeToolCall` values to the
    :class:`NativeToolCallPassthrough`.

    Args:
        state: Parser state to resume from, or a fresh one.
    """

    def __init__(self, state: ParserState | None = None):
        self.scanner = InlineToolCallScanner(state)
        self.paths: tuple[DecoderPath, ...] = (NativeToolCallPassthrough(), self.scanner)

    @property
    def state(self) -> ParserState:
        return self.scanner.state

    def feed(self, item: str | NativeToolCall | ModelStreamEvent) -> list[DecodedItem]:
        if isinstance(item, ModelStreamEvent):
            item = item.value
        for path in self.paths:
            if path.accepts(item):
                return path.feed(item)
        raise TypeError(f"Cannot decode item of type {type(item).__name__}")

    def flush(self) -> list[DecodedItem]:
        items: list[DecodedItem] = []
        for path in self.paths:
            items.extend(path.flush())
        return items
