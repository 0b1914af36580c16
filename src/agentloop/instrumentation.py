"""Optional OpenTelemetry instrumentation for agentloop.

Call ``agentloop.instrument()`` once at startup to enable tracing.
Requires ``opentelemetry-api`` to be installed; the loop works
identically without it.
"""

import importlib.util
import logging
from contextlib import asynccontextmanager

logger = logging.getLogger(__name__)

_tracer = None


def instrument(*, tracer_name: str = "agentloop") -> None:
    """Enable OpenTelemetry tracing for invocations, turns and tools.

    Call once at startup, after configuring your TracerProvider.
    Requires ``opentelemetry-api``: ``pip install agentloop[otel]``

    Example::

        from opentelemetry import trace
        from opentelemetry.sdk.trace import TracerProvider

        trace.set_tracer_provider(TracerProvider())

        import agentloop
        agentloop.instrument()

    Args:
        tracer_name: Name passed to ``trace.get_tracer()``.

    Raises:
        ImportError: If ``opentelemetry-api`` is not installed.
    """
    global _tracer
    if importlib.util.find_spec("opentelemetry.trace") is None:
        raise ImportError(
            "opentelemetry-api is required for instrumentation. "
            "Install it with: pip install agentloop[otel]"
        )
    from opentelemetry import trace
    _tracer = trace.get_tracer(tracer_name)
    if isinstance(_tracer, trace.NoOpTracer):
        logger.info(
            "No TracerProvider configured, spans will be "
            "discarded. Set up a TracerProvider to export "
            "traces."
        )
    else:
        logger.info("agentloop instrumentation enabled")


def uninstrument() -> None:
    """Disable OpenTelemetry tracing."""
    global _tracer
    _tracer = None


@asynccontextmanager
async def invocation_span(prompt_id: str):
    """Wrap one orchestrator invocation in an ``invoke_agent`` span."""
    if _tracer is None:
        yield None
        return
    with _tracer.start_as_current_span(
        "invoke_agent agentloop",
        attributes={
            "gen_ai.operation.name": "invoke_agent",
            "gen_ai.conversation.id": prompt_id,
        },
    ) as span:
        yield span


@asynccontextmanager
async def turn_span(turn: int):
    """Wrap one model turn in a ``chat`` span."""
    if _tracer is None:
        yield None
        return
    from opentelemetry.trace import SpanKind

    with _tracer.start_as_current_span(
        f"chat turn {turn}",
        kind=SpanKind.CLIENT,
        attributes={
            "gen_ai.operation.name": "chat",
            "agentloop.turn": turn,
        },
    ) as span:
        yield span


@asynccontextmanager
async def tool_span(tool_name: str, call_id: str | None):
    """Wrap a tool execution in an ``execute_tool`` span."""
    if _tracer is None:
        yield None
        return
    attributes = {
        "gen_ai.operation.name": "execute_tool",
        "gen_ai.tool.name": tool_name,
    }
    if call_id is not None:
        attributes["gen_ai.tool.call.id"] = call_id
    with _tracer.start_as_current_span(
        f"execute_tool {tool_name}", attributes=attributes,
    ) as span:
        yield span


def record_error(span, error: BaseException | str) -> None:
    """Record an error and set ERROR status on a span.

    Sets ``error.type`` per GenAI semantic conventions.
    No-ops when *span* is ``None`` (tracing disabled).
    """
    if span is None:
        return
    from opentelemetry.trace import StatusCode

    span.set_status(StatusCode.ERROR, str(error))
    if isinstance(error, BaseException):
        span.record_exception(error)
        span.set_attribute("error.type", type(error).__qualname__)
    else:
        span.set_attribute("error.type", "tool_error")
