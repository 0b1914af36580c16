import json
import logging
import os
from collections.abc import AsyncIterator

from openai import AsyncOpenAI

from agentloop.cancellation import CancellationToken
from agentloop.message import ConversationEntry, Role
from agentloop.streaming import ModelStreamEvent, ToolCallAccumulator, ToolCallFragment

logger = logging.getLogger(__name__)


def to_chat_messages(
    history: tuple[ConversationEntry, ...], system_prompt: str | None = None,
) -> list[dict]:
    """Convert conversation entries into chat-completions messages.

    Tool entries become a user message listing each function response,
    since the history does not record the assistant-side call ids the
    ``tool`` role would need.
    """
    messages = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    for entry in history:
        if entry.role is Role.TOOL:
            lines = []
            for part in entry.parts:
                response = part.get("functionResponse")
                if response is not None:
                    lines.append(
                        f"Result of {response.get('name')}: "
                        f"{json.dumps(response.get('response'), default=str)}"
                    )
                elif "text" in part:
                    lines.append(part["text"])
            messages.append({"role": "user", "content": "\n".join(lines)})
        elif entry.role is Role.MODEL:
            messages.append({"role": "assistant", "content": entry.text})
        else:
            messages.append({"role": "user", "content": entry.text})
    return messages


class OpenAIStreamSource:
    """Model Stream Source backed by an OpenAI-compatible chat endpoint.

    Text deltas are surfaced immediately; native tool-call fragments are
    reassembled and surfaced once the provider stream ends.  Inline
    tool-call markup in the text is left for the decoder.

    Args:
        model: Model name sent with every request.
        api_key: API key, or ``OPENAI_API_KEY`` from the environment.
        base_url: Endpoint override for compatible servers.
        tools: Function tool schemas offered to the model.
        system_prompt: Prepended to every request, never stored in history.
        client: Preconfigured ``AsyncOpenAI`` client.
    """

    def __init__(
        self,
        model: str,
        api_key: str | None = None,
        base_url: str | None = None,
        tools: list[dict] | None = None,
        system_prompt: str | None = None,
        client: AsyncOpenAI | None = None,
    ):
        self.model = model
        self.tools = tools or []
        self.system_prompt = system_prompt
        if client is None:
            client = AsyncOpenAI(
                api_key=api_key or os.getenv("OPENAI_API_KEY"),
                base_url=base_url,
                max_retries=5,
                timeout=600.0,
            )
        self.client = client

    async def stream(
        self,
        history: tuple[ConversationEntry, ...],
        *,
        prompt_id: str,
        cancellation: CancellationToken,
    ) -> AsyncIterator[ModelStreamEvent]:
        kwargs = {}
        if self.tools:
            kwargs["tools"] = self.tools
        logger.debug(f"[{prompt_id}] Requesting completion from {self.model}")
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=to_chat_messages(history, self.system_prompt),
            stream=True,
            **kwargs,
        )

        acc = ToolCallAccumulator()
        async for chunk in response:
            if not chunk.choices:
                continue
            delta = chunk.choices[0].delta
            if delta.content:
                yield ModelStreamEvent.content(delta.content)
            for tc in delta.tool_calls or []:
                function = tc.function
                acc.feed(ToolCallFragment(
                    index=tc.index,
                    call_id=tc.id,
                    name=function.name if function else None,
                    arguments_delta=function.arguments if function else None,
                ))
            if cancellation.cancelled:
                return

        for call in acc.finalize():
            yield ModelStreamEvent.tool_call(call.name, call.arguments, call.id or None)


class OpenRouterStreamSource(OpenAIStreamSource):

    def __init__(self, model: str, api_key: str | None = None, **kwargs):
        client = AsyncOpenAI(
            base_url="https://openrouter.ai/api/v1",
            api_key=api_key or os.getenv("OPENROUTER_API_KEY"),
            max_retries=5,
            timeout=180.0,
        )
        super().__init__(model, client=client, **kwargs)


class VLLMStreamSource(OpenAIStreamSource):

    def __init__(self, model: str, url: str, port: int, **kwargs):
        self.base_url = f"http://{url}:{port}/v1"
        client = AsyncOpenAI(base_url=self.base_url, api_key="DUMMY")
        super().__init__(model, client=client, **kwargs)
