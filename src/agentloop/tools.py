import inspect
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol

from pydantic import BaseModel, Field

from agentloop.cancellation import CancellationToken
from agentloop.message import function_response_part

logger = logging.getLogger(__name__)

# Parameters filled in by the registry, never exposed to the model.
_INJECTED_PARAMS = ("context",)

_JSON_TYPES = {
    str: "string",
    int: "integer",
    float: "number",
    bool: "boolean",
    list: "array",
    tuple: "array",
    set: "array",
    dict: "object",
    type(None): "null",
}


@dataclass
class ToolCallDescriptor:
    """A decoded request to invoke a tool.

    ``id`` is ``None`` until the orchestrator assigns the call's index
    within its turn.  ``parsed_arguments`` is only set when
    ``raw_arguments`` decoded cleanly.
    """

    name: str
    raw_arguments: str = ""
    id: str | None = None
    parsed_arguments: Any = None


@dataclass
class ToolExecution:
    """What a Tool Executor reports back for one call."""

    error: str | None = None
    response_parts: list[dict[str, Any]] | None = None
    result_display: str | None = None


@dataclass
class ToolResult:
    """Outcome of one executed :class:`ToolCallDescriptor`.

    ``call`` is the descriptor object itself, so results are matched to
    their requests by identity.
    """

    call: ToolCallDescriptor
    ok: bool
    response_parts: list[dict[str, Any]] = field(default_factory=list)
    result_display: str | None = None
    error: str | None = None

    @property
    def call_id(self) -> str | None:
        return self.call.id

    @property
    def name(self) -> str:
        return self.call.name


class ToolExecutor(Protocol):
    async def __call__(
        self, descriptor: ToolCallDescriptor, cancellation: CancellationToken,
    ) -> ToolExecution: ...


@dataclass
class ToolContext:
    """Injected into tools that declare a ``context`` parameter.

    Args:
        call: The descriptor being executed.
        cancellation: The invocation's cancellation token, for tools that
            want to stop early on their own.
    """

    call: ToolCallDescriptor
    cancellation: CancellationToken


class ToolCallResult(BaseModel):
    tool_name: str
    output: Any = None


def _json_type(annotation: Any) -> str:
    if annotation is inspect.Parameter.empty:
        return "string"
    origin = getattr(annotation, "__origin__", None)
    return _JSON_TYPES.get(origin or annotation, "string")


def _parse_param_descriptions(func: Callable) -> dict[str, str]:
    """Read parameter descriptions from a Google or reST style docstring."""
    doc = inspect.getdoc(func)
    if not doc:
        return {}

    descriptions: dict[str, str] = {}
    for match in re.finditer(r"^:param\s+(?:\w+\s+)?(\w+):\s*(.+)$", doc, re.MULTILINE):
        descriptions[match.group(1)] = match.group(2).strip()
    if descriptions:
        return descriptions

    in_args = False
    current: str | None = None
    for line in doc.splitlines():
        stripped = line.strip()
        if stripped in ("Args:", "Arguments:", "Parameters:"):
            in_args = True
            continue
        if not in_args:
            continue
        if not stripped:
            current = None
            continue
        if not line.startswith((" ", "\t")):
            break
        match = re.match(r"^(\w+)(?:\s*\([^)]*\))?:\s*(.*)$", stripped)
        if match:
            current = match.group(1)
            descriptions[current] = match.group(2).strip()
        elif current is not None:
            descriptions[current] = f"{descriptions[current]} {stripped}".strip()
    return descriptions


def _build_parameters_schema(func: Callable) -> tuple[dict, list[str]]:
    """Build a JSON schema for ``func``'s parameters.

    Returns the schema and the list of required parameter names.
    """
    signature = inspect.signature(func)
    descriptions = _parse_param_descriptions(func)
    properties = {}
    required = []
    for name, param in signature.parameters.items():
        if name in _INJECTED_PARAMS:
            continue
        properties[name] = {
            "type": _json_type(param.annotation),
            "description": descriptions.get(name, ""),
        }
        if param.default is inspect.Parameter.empty:
            required.append(name)
    schema = {"type": "object", "properties": properties, "required": required}
    return schema, required


class Tool(BaseModel):
    """A Python callable exposed to the model as a function tool."""

    func: Callable = Field(exclude=True)
    name: str
    description: str = ""
    parameters_schema: dict = Field(default_factory=dict)

    model_config = {"arbitrary_types_allowed": True}

    def model_dump(self, **kwargs):
        """Return the OpenAI-compatible function tool schema."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters_schema,
            },
        }

    def model_dump_json(self, **kwargs):
        return json.dumps(self.model_dump())

    @property
    def wants_context(self) -> bool:
        return "context" in inspect.signature(self.func).parameters

    async def __call__(self, **kwargs) -> ToolCallResult:
        output = self.func(**kwargs)
        if inspect.isawaitable(output):
            output = await output
        return ToolCallResult(tool_name=self.name, output=output)


def tool(func: Callable | None = None, *, name: str | None = None, description: str | None = None):
    """Turn a function into a :class:`Tool`.

    Usable bare (``@tool``) or with overrides
    (``@tool(name="search", description="...")``).
    """

    def wrap(f: Callable) -> Tool:
        schema, _ = _build_parameters_schema(f)
        doc = inspect.getdoc(f) or ""
        return Tool(
            func=f,
            name=name or f.__name__,
            description=description if description is not None else doc.split("\n\n")[0].strip(),
            parameters_schema=schema,
        )

    if func is not None:
        return wrap(func)
    return wrap


class ToolRegistry:
    """In-process Tool Executor backed by :class:`Tool` objects.

    Args:
        tools: Tools to register. Names must be unique.
    """

    def __init__(self, tools: list[Tool] | None = None):
        self._tools: dict[str, Tool] = {}
        for t in tools or []:
            self.register(t)

    def register(self, t: Tool) -> None:
        if t.name in self._tools:
            raise ValueError(f"Duplicate tool name: '{t.name}'")
        self._tools[t.name] = t

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def schemas(self) -> list[dict]:
        return [t.model_dump() for t in self._tools.values()]

    async def __call__(
        self, descriptor: ToolCallDescriptor, cancellation: CancellationToken,
    ) -> ToolExecution:
        tool_obj = self._tools.get(descriptor.name)
        if tool_obj is None:
            logger.warning(f"Tool not found: {descriptor.name}")
            return ToolExecution(error=f"Tool '{descriptor.name}' not found")

        params = descriptor.parsed_arguments
        if params is None:
            params = {}
        if not isinstance(params, dict):
            return ToolExecution(
                error=f"Arguments for {descriptor.name} must be a JSON object",
            )
        params = dict(params)
        if tool_obj.wants_context:
            params["context"] = ToolContext(call=descriptor, cancellation=cancellation)

        logger.info(f"Calling {descriptor.name} with {descriptor.parsed_arguments}")
        try:
            result = await tool_obj(**params)
        except Exception as e:
            logger.error(f"Tool {descriptor.name} raised: {e}")
            return ToolExecution(error=f"Error calling {descriptor.name}: {e}")

        output = result.output
        display = output if isinstance(output, str) else json.dumps(output, default=str)
        return ToolExecution(
            response_parts=[
                function_response_part(descriptor.name, {"output": output}, descriptor.id),
            ],
            result_display=display,
        )
