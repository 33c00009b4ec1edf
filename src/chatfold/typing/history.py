from collections.abc import Sequence
from typing import Any, Literal, TypeAlias

from pydantic import BaseModel, ConfigDict, Field

from .document import Document, FunctionCallOutput, Reasoning, new_id


class InputText(BaseModel):
    type: Literal["input_text"] = "input_text"
    text: str

    model_config = ConfigDict(frozen=True)


class InputMessage(BaseModel):
    """A message typed by the user (or injected by the caller) into the history."""

    id: str = Field(default_factory=lambda: new_id("msg"))
    type: Literal["message"] = "message"
    role: Literal["user", "assistant", "system", "developer"] = "user"
    content: list[InputText]

    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_text(
        cls,
        text: str,
        role: Literal["user", "assistant", "system", "developer"] = "user",
    ) -> "InputMessage":
        return cls(role=role, content=[InputText(text=text)])

    @property
    def text(self) -> str:
        return "".join(part.text for part in self.content)


HistoryEntry: TypeAlias = InputMessage | Document


def entry_id(entry: HistoryEntry) -> str:
    return entry.id


def to_input_items(history: Sequence[HistoryEntry]) -> list[dict[str, Any]]:
    """
    Flatten a conversation history into Responses API input items.

    Documents contribute their output items; reasoning items are resubmitted
    without their status. Locally assigned ids (input messages, tool
    results) are dropped.
    """
    items: list[dict[str, Any]] = []
    for entry in history:
        if isinstance(entry, InputMessage):
            payload = entry.model_dump(mode="json", exclude={"id"})
            if entry.role == "assistant":
                payload["content"] = [
                    {"type": "output_text", "text": part.text} for part in entry.content
                ]
            items.append(payload)
        else:
            for item in entry.output:
                exclude: set[str] = set()
                if isinstance(item, Reasoning):
                    exclude = {"status"}
                elif isinstance(item, FunctionCallOutput):
                    exclude = {"id"}
                items.append(
                    item.model_dump(mode="json", exclude_none=True, exclude=exclude)
                )
    return items


def truncate_before(
    history: Sequence[HistoryEntry], target_id: str
) -> list[HistoryEntry]:
    """Return the prefix of ``history`` preceding the entry ``target_id``."""
    for index, entry in enumerate(history):
        if entry_id(entry) == target_id:
            return list(history[:index])
    raise KeyError(f"No history entry with id '{target_id}'")
