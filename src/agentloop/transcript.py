"""Transcript items: the per-invocation log of what the loop did."""

from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


class _Item(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class AssistantItem(_Item):
    type: Literal["assistant"] = "assistant"
    content: str


class ToolCallItem(_Item):
    type: Literal["tool_call"] = "tool_call"
    name: str
    arguments: Any = None


class ToolResultItem(_Item):
    type: Literal["tool_result"] = "tool_result"
    name: str
    ok: bool
    response_text: str | None = Field(default=None, alias="responseText")
    response: Any = None
    error: str | None = None


TranscriptItem = Union[AssistantItem, ToolCallItem, ToolResultItem]
