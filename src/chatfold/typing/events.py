"""
Canonical streaming events.

Every producer (native Responses stream, the Chat Completions delta adapter,
the relay) emits instances of ``ResponseEvent``; the reducer folds them into a
``Document``. Events address items and parts positionally (``output_index``,
``content_index``, ``summary_index``); ``item_id`` is informational.

``sequence_number`` is diagnostic only and is never used for ordering.
"""

from collections.abc import Mapping
from typing import Annotated, Any, Literal, TypeAlias, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from .document import (
    ContentPart,
    Document,
    FunctionCallOutput,
    OutputItem,
    SummaryPart,
)


class _Event(BaseModel):
    model_config = ConfigDict(frozen=True, extra="allow")

    sequence_number: int | None = None


# --- Response lifecycle (full snapshots) ---


class ResponseCreatedEvent(_Event):
    type: Literal["response.created"] = "response.created"
    response: Document


class ResponseCompletedEvent(_Event):
    type: Literal["response.completed"] = "response.completed"
    response: Document


class ResponseFailedEvent(_Event):
    type: Literal["response.failed"] = "response.failed"
    response: Document


class ResponseIncompleteEvent(_Event):
    type: Literal["response.incomplete"] = "response.incomplete"
    response: Document


# --- Output items ---


class OutputItemAddedEvent(_Event):
    type: Literal["response.output_item.added"] = "response.output_item.added"
    output_index: int
    item: OutputItem


class OutputItemDoneEvent(_Event):
    type: Literal["response.output_item.done"] = "response.output_item.done"
    output_index: int
    item: OutputItem


# --- Content parts ---


class ContentPartAddedEvent(_Event):
    type: Literal["response.content_part.added"] = "response.content_part.added"
    item_id: str | None = None
    output_index: int
    content_index: int
    part: ContentPart


class ContentPartDoneEvent(_Event):
    type: Literal["response.content_part.done"] = "response.content_part.done"
    item_id: str | None = None
    output_index: int
    content_index: int
    part: ContentPart


class OutputTextDeltaEvent(_Event):
    type: Literal["response.output_text.delta"] = "response.output_text.delta"
    item_id: str | None = None
    output_index: int
    content_index: int
    delta: str
    logprobs: list[Any] | None = Field(default_factory=list)


# --- Reasoning ---


class ReasoningTextDeltaEvent(_Event):
    type: Literal["response.reasoning_text.delta"] = "response.reasoning_text.delta"
    item_id: str | None = None
    output_index: int
    content_index: int
    delta: str


class ReasoningSummaryPartAddedEvent(_Event):
    type: Literal["response.reasoning_summary_part.added"] = (
        "response.reasoning_summary_part.added"
    )
    item_id: str | None = None
    output_index: int
    summary_index: int
    part: SummaryPart


class ReasoningSummaryTextDeltaEvent(_Event):
    type: Literal["response.reasoning_summary_text.delta"] = (
        "response.reasoning_summary_text.delta"
    )
    item_id: str | None = None
    output_index: int
    summary_index: int
    delta: str


# --- Tool call argument streams ---


class FunctionCallArgumentsDeltaEvent(_Event):
    type: Literal["response.function_call_arguments.delta"] = (
        "response.function_call_arguments.delta"
    )
    item_id: str | None = None
    output_index: int
    delta: str


class McpCallArgumentsDeltaEvent(_Event):
    type: Literal["response.mcp_call_arguments.delta"] = (
        "response.mcp_call_arguments.delta"
    )
    item_id: str | None = None
    output_index: int
    delta: str


class CodeInterpreterCallCodeDeltaEvent(_Event):
    type: Literal["response.code_interpreter_call_code.delta"] = (
        "response.code_interpreter_call_code.delta"
    )
    item_id: str | None = None
    output_index: int
    delta: str


# --- Local tool results (never sent by an upstream) ---


class FunctionCallOutputCompletedEvent(_Event):
    type: Literal["response.function_call_output.completed"] = (
        "response.function_call_output.completed"
    )
    output_index: int
    item: FunctionCallOutput


class FunctionCallOutputIncompleteEvent(_Event):
    type: Literal["response.function_call_output.incomplete"] = (
        "response.function_call_output.incomplete"
    )
    output_index: int
    item: FunctionCallOutput


# --- Upstream error record ---


class ErrorEvent(_Event):
    type: Literal["error"] = "error"
    code: str | None = None
    message: str = ""
    param: str | None = None


ResponseEvent: TypeAlias = Annotated[
    Union[
        ResponseCreatedEvent,
        ResponseCompletedEvent,
        ResponseFailedEvent,
        ResponseIncompleteEvent,
        OutputItemAddedEvent,
        OutputItemDoneEvent,
        ContentPartAddedEvent,
        ContentPartDoneEvent,
        OutputTextDeltaEvent,
        ReasoningTextDeltaEvent,
        ReasoningSummaryPartAddedEvent,
        ReasoningSummaryTextDeltaEvent,
        FunctionCallArgumentsDeltaEvent,
        McpCallArgumentsDeltaEvent,
        CodeInterpreterCallCodeDeltaEvent,
        FunctionCallOutputCompletedEvent,
        FunctionCallOutputIncompleteEvent,
        ErrorEvent,
    ],
    Field(discriminator="type"),
]

SNAPSHOT_EVENTS = (
    ResponseCreatedEvent,
    ResponseCompletedEvent,
    ResponseFailedEvent,
    ResponseIncompleteEvent,
)
TERMINAL_EVENTS = (
    ResponseCompletedEvent,
    ResponseFailedEvent,
    ResponseIncompleteEvent,
)

ResponseEventAdapter: TypeAdapter[ResponseEvent] = TypeAdapter(ResponseEvent)


def parse_event(payload: Mapping[str, Any] | BaseModel) -> ResponseEvent | None:
    """
    Validate a raw event into a canonical ``ResponseEvent``.

    Accepts a decoded JSON mapping or any pydantic model exposing the same
    fields (e.g. an OpenAI SDK stream event). Unknown tags and payloads
    missing required fields yield ``None``.
    """
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(mode="json", exclude_none=True)
    if not isinstance(payload, Mapping):
        return None
    try:
        return ResponseEventAdapter.validate_python(payload)
    except ValidationError:
        return None
