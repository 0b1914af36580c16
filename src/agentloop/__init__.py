__version__ = "0.1.0"

from agentloop.approval import ApprovalMode, ApprovalSettings
from agentloop.cancellation import CancellationToken
from agentloop.decoder import ToolCallDecoder
from agentloop.instrumentation import instrument, uninstrument
from agentloop.orchestrator import GenerationResult, TurnOrchestrator
from agentloop.session import SessionInvocation
from agentloop.tools import Tool, ToolRegistry, tool

__all__ = [
    "ApprovalMode",
    "ApprovalSettings",
    "CancellationToken",
    "GenerationResult",
    "SessionInvocation",
    "Tool",
    "ToolCallDecoder",
    "ToolRegistry",
    "TurnOrchestrator",
    "instrument",
    "tool",
    "uninstrument",
]
