from collections.abc import Iterable, Mapping
from typing import Any

from ..errors import UnsupportedToolError
from . import OpenAIFunctionDefinition, OpenAIMessageParam

_TEXT_PART_TYPES = frozenset({"input_text", "output_text"})


def _message_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    return "".join(
        part.get("text", "")
        for part in content or []
        if isinstance(part, Mapping) and part.get("type") in _TEXT_PART_TYPES
    )


def to_chat_messages(
    input_items: Iterable[Mapping[str, Any]], instructions: str | None = None
) -> list[OpenAIMessageParam]:
    """
    Reduce Responses input items to Chat Completions messages.

    Only message items survive; tool calls, reasoning and other item kinds
    have no counterpart in a plain chat transcript.
    """
    messages: list[OpenAIMessageParam] = []
    if instructions:
        messages.append({"role": "system", "content": instructions})

    for item in input_items:
        if item.get("type", "message") != "message":
            continue
        role = item.get("role", "user")
        messages.append(
            {"role": role, "content": _message_text(item.get("content"))}  # type: ignore[misc]
        )

    return messages


def to_chat_tool(tool: Mapping[str, Any]) -> dict[str, Any]:
    if tool.get("type") != "function":
        raise UnsupportedToolError("Chat Completions API only supports function tools")

    function = OpenAIFunctionDefinition(name=tool["name"])
    if tool.get("description") is not None:
        function["description"] = tool["description"]
    if tool.get("parameters") is not None:
        function["parameters"] = tool["parameters"]
    if tool.get("strict") is not None:
        function["strict"] = tool["strict"]

    return {"type": "function", "function": function}


def to_chat_tools(
    tools: Iterable[Mapping[str, Any]] | None,
) -> list[dict[str, Any]] | None:
    if not tools:
        return None
    return [to_chat_tool(tool) for tool in tools]
