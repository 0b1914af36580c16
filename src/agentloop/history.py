from collections.abc import Sequence
from dataclasses import dataclass, field

from agentloop.message import ConversationEntry, Role, text_part
from agentloop.tools import ToolResult


@dataclass
class TurnOutput:
    """What one turn contributes to the history.

    Args:
        user_entry: The caller's input; only the first turn has one.
        text: Assistant text streamed during the turn.
        tool_results: Results of the calls executed this turn, in
            execution order.
    """

    user_entry: ConversationEntry | None = None
    text: str = ""
    tool_results: list[ToolResult] = field(default_factory=list)


def tool_entry(results: Sequence[ToolResult]) -> ConversationEntry:
    """Synthetic tool-role entry holding every result's parts, in order."""
    parts = tuple(part for r in results for part in r.response_parts)
    return ConversationEntry(role=Role.TOOL, parts=parts)


def assemble_history(
    prior: Sequence[ConversationEntry], turns: Sequence[TurnOutput],
) -> tuple[ConversationEntry, ...]:
    """Extend ``prior`` with the entries produced by ``turns``.

    Pure: ``prior`` is copied, never modified.  Per turn this appends the
    user entry (when present), a model entry when the turn produced text,
    and a tool entry when at least one call was executed.
    """
    history = list(prior)
    for turn in turns:
        if turn.user_entry is not None:
            history.append(turn.user_entry)
        if turn.text:
            history.append(ConversationEntry(role=Role.MODEL, parts=(text_part(turn.text),)))
        if turn.tool_results:
            history.append(tool_entry(turn.tool_results))
    return tuple(history)
