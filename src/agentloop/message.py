from enum import Enum
from typing import Any

from pydantic import BaseModel, field_serializer


class Role(Enum):
    USER = "user"
    MODEL = "model"
    TOOL = "tool"


class ConversationEntry(BaseModel):
    """One entry of the conversation history.

    Entries are frozen: history is only ever extended, never edited.
    ``parts`` follows the content-part shape used on the wire, e.g.
    ``{"text": ...}``, ``{"functionCall": {...}}`` or
    ``{"functionResponse": {...}}``.
    """

    role: Role
    parts: tuple[dict[str, Any], ...] = ()

    model_config = {"frozen": True}

    @field_serializer('role')
    def serialize_role(self, role: Role, _info) -> str:
        return role.value

    @property
    def text(self) -> str:
        return "".join(p["text"] for p in self.parts if "text" in p)


def text_part(text: str) -> dict[str, Any]:
    return {"text": text}


def function_call_part(name: str, args: Any, call_id: str | None = None) -> dict[str, Any]:
    call: dict[str, Any] = {"name": name, "args": args}
    if call_id is not None:
        call["id"] = call_id
    return {"functionCall": call}


def function_response_part(
    name: str, response: dict[str, Any], call_id: str | None = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {"name": name, "response": response}
    if call_id is not None:
        payload["id"] = call_id
    return {"functionResponse": payload}


def user_entry(text: str) -> ConversationEntry:
    return ConversationEntry(role=Role.USER, parts=(text_part(text),))


def dump_history(history) -> list[dict[str, Any]]:
    """JSON-ready form of a history, as resent by stateless clients."""
    return [entry.model_dump(mode="json") for entry in history]
