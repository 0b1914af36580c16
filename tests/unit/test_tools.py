import pytest

from agentloop.cancellation import CancellationToken
from agentloop.tools import (
    Tool,
    ToolCallDescriptor,
    ToolContext,
    ToolRegistry,
    _build_parameters_schema,
    _parse_param_descriptions,
    tool,
)


# ---------------------------------------------------------------------------
# Schema generation (_build_parameters_schema)
# ---------------------------------------------------------------------------


class TestBuildParametersSchema:
    def test_python_types_map_to_json_schema_types(self):
        def func(a: str, b: int, c: float, d: bool, e: list, f: dict):
            pass

        schema, _ = _build_parameters_schema(func)
        assert schema["properties"]["a"]["type"] == "string"
        assert schema["properties"]["b"]["type"] == "integer"
        assert schema["properties"]["c"]["type"] == "number"
        assert schema["properties"]["d"]["type"] == "boolean"
        assert schema["properties"]["e"]["type"] == "array"
        assert schema["properties"]["f"]["type"] == "object"

    def test_context_param_excluded(self):
        def func(context, query: str):
            pass

        schema, _ = _build_parameters_schema(func)
        assert "context" not in schema["properties"]
        assert "query" in schema["properties"]

    def test_optional_params_not_required(self):
        def func(name: str, greeting: str = "hi"):
            pass

        _, required = _build_parameters_schema(func)
        assert required == ["name"]

    def test_unannotated_param_defaults_to_string(self):
        def func(x):
            pass

        schema, _ = _build_parameters_schema(func)
        assert schema["properties"]["x"]["type"] == "string"


class TestParseParamDescriptions:
    def test_google_style(self):
        def func(name: str, age: int):
            """Do something.

            Args:
                name: The user's name.
                age: The user's
                    age in years.
            """

        assert _parse_param_descriptions(func) == {
            "name": "The user's name.",
            "age": "The user's age in years.",
        }

    def test_rest_style(self):
        def func(user_id):
            """Look up a user.

            :param user_id: Identifier of the user.
            """

        assert _parse_param_descriptions(func) == {"user_id": "Identifier of the user."}

    def test_no_docstring(self):
        def func(x):
            pass

        assert _parse_param_descriptions(func) == {}


class TestToolDecorator:
    def test_bare_decorator(self):
        @tool
        def greet(name: str):
            """Say hello."""
            return f"Hello {name}"

        assert isinstance(greet, Tool)
        assert greet.name == "greet"
        assert greet.description == "Say hello."

    def test_decorator_with_args(self):
        @tool(name="custom_name", description="Custom desc")
        def greet(name: str):
            return name

        assert greet.name == "custom_name"
        assert greet.description == "Custom desc"

    def test_model_dump_openai_format(self):
        @tool
        def read_file(path: str):
            """Read a file.

            Args:
                path: File to read.
            """

        assert read_file.model_dump() == {
            "type": "function",
            "function": {
                "name": "read_file",
                "description": "Read a file.",
                "parameters": {
                    "type": "object",
                    "properties": {"path": {"type": "string", "description": "File to read."}},
                    "required": ["path"],
                },
            },
        }


# ---------------------------------------------------------------------------
# ToolRegistry as a tool executor
# ---------------------------------------------------------------------------


@tool
def add(a: int, b: int):
    """Add two numbers."""
    return a + b


@tool
async def fetch(url: str):
    """Fetch a URL."""
    return {"url": url, "status": 200}


@tool
def explode():
    """Always fails."""
    raise RuntimeError("boom")


@tool
def whoami(context: ToolContext):
    """Report the call id."""
    return f"call {context.call.id}"


class TestToolRegistry:
    @pytest.mark.asyncio
    async def test_sync_tool(self):
        registry = ToolRegistry([add])
        call = ToolCallDescriptor(name="add", id="0", parsed_arguments={"a": 2, "b": 3})
        execution = await registry(call, CancellationToken())

        assert execution.error is None
        assert execution.result_display == "5"
        assert execution.response_parts == [
            {"functionResponse": {"name": "add", "response": {"output": 5}, "id": "0"}},
        ]

    @pytest.mark.asyncio
    async def test_async_tool_structured_output(self):
        registry = ToolRegistry([fetch])
        call = ToolCallDescriptor(name="fetch", parsed_arguments={"url": "https://x"})
        execution = await registry(call, CancellationToken())

        assert execution.result_display == '{"url": "https://x", "status": 200}'

    @pytest.mark.asyncio
    async def test_unknown_tool(self):
        execution = await ToolRegistry()(ToolCallDescriptor(name="nope"), CancellationToken())
        assert "not found" in execution.error

    @pytest.mark.asyncio
    async def test_tool_exception_is_captured(self):
        registry = ToolRegistry([explode])
        execution = await registry(ToolCallDescriptor(name="explode", parsed_arguments={}), CancellationToken())
        assert "boom" in execution.error
        assert execution.response_parts is None

    @pytest.mark.asyncio
    async def test_non_object_arguments_rejected(self):
        registry = ToolRegistry([add])
        execution = await registry(ToolCallDescriptor(name="add", parsed_arguments=[1, 2]), CancellationToken())
        assert "JSON object" in execution.error

    @pytest.mark.asyncio
    async def test_context_injection(self):
        registry = ToolRegistry([whoami])
        execution = await registry(ToolCallDescriptor(name="whoami", id="7", parsed_arguments={}), CancellationToken())
        assert execution.result_display == "call 7"

    def test_duplicate_names_rejected(self):
        with pytest.raises(ValueError, match="Duplicate"):
            ToolRegistry([add, add])

    def test_schemas(self):
        registry = ToolRegistry([add, fetch])
        assert [s["function"]["name"] for s in registry.schemas()] == ["add", "fetch"]
        assert "add" in registry
