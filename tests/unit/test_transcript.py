from pydantic import TypeAdapter

from agentloop.transcript import AssistantItem, ToolCallItem, ToolResultItem, TranscriptItem


def test_assistant_wire_shape():
    assert AssistantItem(content="hi").to_wire() == {"type": "assistant", "content": "hi"}


def test_tool_call_without_arguments_omits_field():
    assert ToolCallItem(name="ls").to_wire() == {"type": "tool_call", "name": "ls"}


def test_tool_result_uses_camel_case_alias():
    item = ToolResultItem(name="ls", ok=True, response_text="a.txt", response={"output": "a.txt"})
    assert item.to_wire() == {
        "type": "tool_result",
        "name": "ls",
        "ok": True,
        "responseText": "a.txt",
        "response": {"output": "a.txt"},
    }


def test_tool_result_accepts_alias_on_input():
    item = ToolResultItem.model_validate({"name": "ls", "ok": True, "responseText": "x"})
    assert item.response_text == "x"


def test_failed_result_carries_error():
    item = ToolResultItem(name="ls", ok=False, error="denied")
    assert item.to_wire() == {"type": "tool_result", "name": "ls", "ok": False, "error": "denied"}


def test_union_dispatches_on_type():
    adapter = TypeAdapter(TranscriptItem)
    item = adapter.validate_python({"type": "tool_call", "name": "ls", "arguments": {}})
    assert isinstance(item, ToolCallItem)
