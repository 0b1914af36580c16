"""HTTP transport for the turn orchestrator.

``POST /v1/generate`` runs one invocation.  With ``stream: false`` the
response is ``{output, prompt_id, messages, history}``; with
``stream: true`` it is a Server-Sent Events stream of ``content``,
``tool_call``, ``tool_result``, ``history`` and finally ``done`` or
``error`` events.  A client that disconnects, in either mode, cancels the
invocation.
"""

import asyncio
import logging
import uuid
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel

from agentloop import __version__
from agentloop.config import Settings, configure_logging
from agentloop.errors import GenerationError
from agentloop.message import ConversationEntry, dump_history
from agentloop.orchestrator import TurnOrchestrator
from agentloop.provider import OpenAIStreamSource
from agentloop.session import SessionInvocation
from agentloop.sse import sse_generator
from agentloop.tools import Tool, ToolRegistry

logger = logging.getLogger(__name__)


class GenerateRequest(BaseModel):
    input: str = ""
    stream: bool = False
    prompt_id: str | None = None
    history: list[ConversationEntry] | None = None


def build_orchestrator(settings: Settings, tools: list[Tool] | None = None) -> TurnOrchestrator:
    registry = ToolRegistry(tools)
    source = OpenAIStreamSource(
        model=settings.model,
        api_key=settings.api_key,
        base_url=settings.base_url,
        tools=registry.schemas(),
        system_prompt=settings.system_prompt,
    )
    return TurnOrchestrator(source, registry, max_turns=settings.max_turns)


def create_app(orchestrator: TurnOrchestrator, settings: Settings | None = None) -> FastAPI:
    settings = settings or Settings()
    app = FastAPI(title="agentloop", version=__version__)

    @app.get("/healthz")
    async def healthz() -> dict:
        return {"status": "ok"}

    @app.get("/status")
    async def status() -> dict:
        return {
            "status": "ready",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": __version__,
            "endpoints": {
                "generate": "/v1/generate",
                "health": "/healthz",
                "status": "/status",
            },
            "features": {
                "streaming": True,
                "conversationHistory": True,
                "toolExecution": True,
            },
        }

    @app.post("/v1/generate")
    async def generate(body: GenerateRequest, request: Request):
        if not body.input:
            return JSONResponse(status_code=400, content={"error": "Missing required field: input"})

        invocation = SessionInvocation(
            prompt_id=body.prompt_id or uuid.uuid4().hex[:13],
            prior_history=tuple(body.history or ()),
        )
        logger.info(f"[{invocation.prompt_id}] generate stream={body.stream}")

        if body.stream:
            return StreamingResponse(
                _stream(orchestrator, body.input, invocation, request, settings),
                media_type="text/event-stream",
                headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
            )

        watcher = asyncio.create_task(_cancel_on_disconnect(request, invocation))
        try:
            result = await orchestrator.run(
                body.input, invocation, approval_mode=settings.approval_mode,
            )
        except GenerationError as e:
            return JSONResponse(status_code=500, content={"error": str(e)})
        finally:
            watcher.cancel()

        return {
            "output": result.final_text,
            "prompt_id": result.prompt_id,
            "messages": [item.to_wire() for item in result.transcript],
            "history": dump_history(result.history),
        }

    return app


async def _cancel_on_disconnect(
    request: Request, invocation: SessionInvocation, poll_interval: float = 0.25,
):
    """Fire the invocation's cancellation once the client goes away."""
    token = invocation.cancellation
    while not token.cancelled:
        if await request.is_disconnected():
            logger.info(f"[{invocation.prompt_id}] Client disconnected; cancelling")
            token.cancel("client disconnected")
            return
        await asyncio.sleep(poll_interval)


async def _stream(
    orchestrator: TurnOrchestrator,
    input: str,
    invocation: SessionInvocation,
    request: Request,
    settings: Settings,
):
    events = orchestrator.iter(input, invocation, approval_mode=settings.approval_mode)
    frames = sse_generator(events)
    finished = False
    try:
        async for frame in frames:
            if await request.is_disconnected():
                logger.info(f"[{invocation.prompt_id}] Client disconnected; cancelling")
                invocation.cancellation.cancel("client disconnected")
            yield frame
        finished = True
    finally:
        if not finished:
            invocation.cancellation.cancel("stream closed")
        await frames.aclose()
        await events.aclose()


def main() -> None:
    import uvicorn

    settings = Settings.from_env()
    configure_logging(settings.log_level)
    app = create_app(build_orchestrator(settings), settings)
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())
