"""Interactive example: a read-only filesystem assistant.

Demonstrates:
- Defining tools with @tool and serving them from a ToolRegistry
- Streaming text as it arrives with TurnOrchestrator.iter()
- Asking the user before each tool call (ApprovalMode.DEFAULT)
- Carrying history across invocations

Usage:
    Add OPENAI_API_KEY=sk-... to .env, then:
    uv run --env-file=.env examples/filesystem_agent.py
"""

import asyncio
import os

from agentloop import (
    ApprovalMode,
    SessionInvocation,
    ToolRegistry,
    TurnOrchestrator,
    tool,
)
from agentloop.config import configure_logging
from agentloop.events import ContentEvent, DoneEvent, ErrorEvent, TranscriptEvent
from agentloop.provider import OpenAIStreamSource


@tool
def list_directory(path: str):
    """List the entries of a directory.

    Args:
        path: Directory to list.
    """
    return sorted(os.listdir(path))


@tool
def read_file(path: str, max_bytes: int = 4000):
    """Read the start of a text file.

    Args:
        path: File to read.
        max_bytes: Maximum number of characters returned.
    """
    with open(path, encoding="utf-8", errors="replace") as f:
        return f.read(max_bytes)


class ConsolePermissions:
    """Asks on stdin before any tool runs."""

    async def request(self, descriptor):
        answer = await asyncio.to_thread(
            input, f"\nAllow {descriptor.name}({descriptor.raw_arguments})? [y/N] ",
        )
        return answer.strip().lower() in ("y", "yes")


async def main():
    configure_logging("WARNING")
    registry = ToolRegistry([list_directory, read_file])
    source = OpenAIStreamSource(
        model="gpt-4o-mini",
        tools=registry.schemas(),
        system_prompt=(
            "You are a careful assistant that answers questions about "
            "the local filesystem. Use the tools to look before answering."
        ),
    )
    orchestrator = TurnOrchestrator(
        source, registry, permission_provider=ConsolePermissions(),
    )
    history = ()

    print("Filesystem Assistant\n")

    while True:
        try:
            user_input = input("You: ")
        except (KeyboardInterrupt, EOFError):
            print("\nGoodbye!")
            break

        invocation = SessionInvocation(prior_history=history)
        print("Assistant: ", end="", flush=True)
        async for event in orchestrator.iter(
            user_input, invocation, approval_mode=ApprovalMode.DEFAULT,
        ):
            if isinstance(event, ContentEvent):
                print(event.text, end="", flush=True)
            elif isinstance(event, TranscriptEvent) and event.item.type == "tool_result":
                status = "ok" if event.item.ok else event.item.error
                print(f"\n  [{event.item.name}: {status}]")
            elif isinstance(event, DoneEvent):
                history = event.result.history
            elif isinstance(event, ErrorEvent):
                print(f"\n[error: {event.error}]")
                history = event.result.history
        print("\n")


if __name__ == "__main__":
    asyncio.run(main())
