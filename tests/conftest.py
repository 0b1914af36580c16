import json
from typing import Any, Callable

import pytest

from agentloop.cancellation import CancellationToken
from agentloop.decoder import (
    ARGUMENT_BEGIN,
    CALL_BEGIN,
    CALL_END,
    SECTION_BEGIN,
    SECTION_END,
)
from agentloop.message import function_response_part
from agentloop.session import SessionInvocation
from agentloop.streaming import ModelStreamEvent
from agentloop.tools import ToolCallDescriptor, ToolExecution


# ---------------------------------------------------------------------------
# Inline microformat builders
# ---------------------------------------------------------------------------

def inline_call(
    name: str,
    args: dict | str | None = None,
    call_id: str | None = None,
    namespace: str = "functions",
) -> str:
    """One ``<|tool_call_begin|>...<|tool_call_end|>`` block."""
    specifier = f"{namespace}.{name}" if namespace else name
    if call_id is not None:
        specifier += f":{call_id}"
    payload = args if isinstance(args, str) else json.dumps(args or {})
    return f"{CALL_BEGIN}{specifier}{ARGUMENT_BEGIN}{payload}{CALL_END}"


def inline_section(*calls: str) -> str:
    return SECTION_BEGIN + "".join(calls) + SECTION_END


# ---------------------------------------------------------------------------
# Scripted model stream source
# ---------------------------------------------------------------------------

class ScriptedSource:
    """Model stream source that replays scripted turns. No network calls.

    Each turn is a list of steps: a string (content delta), a
    ``ModelStreamEvent``, an exception (raised at that point), or a
    zero-argument callable (run at that point, e.g. to fire cancellation).
    """

    def __init__(self, turns: list[list[Any]] | None = None):
        self.turns: list[list[Any]] = list(turns or [])
        self.call_log: list[dict] = []
        self.closed = 0

    async def stream(self, history, *, prompt_id, cancellation):
        self.call_log.append({"history": history, "prompt_id": prompt_id})
        script = self.turns.pop(0)
        try:
            for step in script:
                if isinstance(step, BaseException):
                    raise step
                if isinstance(step, ModelStreamEvent):
                    yield step
                elif isinstance(step, str):
                    yield ModelStreamEvent.content(step)
                else:
                    step()
        finally:
            self.closed += 1


# ---------------------------------------------------------------------------
# Recording tool executor
# ---------------------------------------------------------------------------

class RecordingExecutor:
    """Tool executor that records every call and answers with canned parts.

    Args:
        failures: Tool names that report an error instead of succeeding.
        on_call: Hook run inside each execution, before it returns.
    """

    def __init__(
        self,
        failures: set[str] | None = None,
        on_call: Callable[[ToolCallDescriptor, CancellationToken], None] | None = None,
    ):
        self.failures = failures or set()
        self.on_call = on_call
        self.calls: list[ToolCallDescriptor] = []

    async def __call__(self, descriptor, cancellation):
        self.calls.append(descriptor)
        if self.on_call is not None:
            self.on_call(descriptor, cancellation)
        if descriptor.name in self.failures:
            return ToolExecution(error=f"{descriptor.name} exploded")
        output = f"{descriptor.name} ok"
        return ToolExecution(
            response_parts=[
                function_response_part(descriptor.name, {"output": output}, descriptor.id),
            ],
            result_display=output,
        )


@pytest.fixture
def executor():
    return RecordingExecutor()


@pytest.fixture
def invocation():
    return SessionInvocation(prompt_id="p1")
