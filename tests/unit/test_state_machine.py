"""Unit tests for the orchestrator's transition function."""

import pytest

from agentloop.errors import InvalidTransition
from agentloop.orchestrator import TERMINAL_STATES, TurnSignal, TurnState, transition


class TestTransition:
    @pytest.mark.parametrize("state,signal,expected", [
        (TurnState.IDLE, TurnSignal.START, TurnState.STREAMING),
        (TurnState.STREAMING, TurnSignal.NO_TOOL_CALLS, TurnState.COMPLETED),
        (TurnState.STREAMING, TurnSignal.TOOL_CALLS, TurnState.AWAITING_TOOLS),
        (TurnState.AWAITING_TOOLS, TurnSignal.EXECUTE, TurnState.EXECUTING),
        (TurnState.EXECUTING, TurnSignal.TOOLS_RESOLVED, TurnState.STREAMING),
    ])
    def test_happy_path(self, state, signal, expected):
        assert transition(state, signal) is expected

    @pytest.mark.parametrize("state", [
        TurnState.IDLE, TurnState.STREAMING, TurnState.AWAITING_TOOLS, TurnState.EXECUTING,
    ])
    def test_cancel_and_fail_from_any_live_state(self, state):
        assert transition(state, TurnSignal.CANCEL) is TurnState.CANCELLED
        assert transition(state, TurnSignal.FAIL) is TurnState.FAILED

    @pytest.mark.parametrize("state", sorted(TERMINAL_STATES, key=lambda s: s.value))
    def test_terminal_states_accept_nothing(self, state):
        for signal in TurnSignal:
            with pytest.raises(InvalidTransition):
                transition(state, signal)

    def test_tools_cannot_run_straight_from_streaming(self):
        with pytest.raises(InvalidTransition) as exc_info:
            transition(TurnState.STREAMING, TurnSignal.EXECUTE)
        assert exc_info.value.state is TurnState.STREAMING
        assert exc_info.value.signal is TurnSignal.EXECUTE

    def test_full_two_turn_walk(self):
        state = TurnState.IDLE
        for signal in [
            TurnSignal.START,
            TurnSignal.TOOL_CALLS,
            TurnSignal.EXECUTE,
            TurnSignal.TOOLS_RESOLVED,
            TurnSignal.NO_TOOL_CALLS,
        ]:
            state = transition(state, signal)
        assert state is TurnState.COMPLETED
