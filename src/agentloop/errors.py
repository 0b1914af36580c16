"""Exception hierarchy for agentloop.

Decode errors are not exceptions: the decoder reports them as values
(see :class:`agentloop.decoder.DecodeError`) and keeps scanning.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from agentloop.orchestrator import GenerationResult, TurnSignal, TurnState


class AgentLoopError(Exception):
    """Base class for all agentloop errors."""


class ModelStreamError(AgentLoopError):
    """The model stream source failed for a reason other than cancellation."""


class GenerationError(AgentLoopError):
    """An invocation ended in the ``Failed`` state.

    Args:
        message: Human readable description.
        result: Partial transcript and history produced before the failure.
    """

    def __init__(self, message: str, result: GenerationResult):
        super().__init__(message)
        self.result = result


class InvalidTransition(AgentLoopError):
    """A signal was delivered to a state that does not accept it."""

    def __init__(self, state: TurnState, signal: TurnSignal):
        super().__init__(f"Signal {signal.name} is not valid in state {state.name}")
        self.state = state
        self.signal = signal


class TurnLimitExceeded(AgentLoopError):
    """The invocation needed more model turns than ``max_turns`` allows."""
