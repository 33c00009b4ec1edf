"""
Document reducer.

``fold(document, event)`` applies one canonical event and returns a new
``Document``. Snapshot events (``response.created``/``completed``/...) return
the embedded response; every other event returns a structurally shared copy
where only the path from the root to the mutated leaf is rebuilt, so
untouched items and parts keep their identity.

The reducer never raises: events addressed at a missing slot, a slot of the
wrong kind or an already sealed item leave the document as it is.
"""

from collections.abc import Callable, Iterable, Mapping
from typing import Any

from .typing.document import (
    SEALED_STATUSES,
    CodeInterpreterCall,
    Document,
    FunctionCall,
    FunctionCallOutput,
    McpCall,
    Message,
    OutputItem,
    OutputText,
    Reasoning,
    ReasoningText,
)
from .typing.events import (
    CodeInterpreterCallCodeDeltaEvent,
    ContentPartAddedEvent,
    ContentPartDoneEvent,
    ErrorEvent,
    FunctionCallArgumentsDeltaEvent,
    FunctionCallOutputCompletedEvent,
    FunctionCallOutputIncompleteEvent,
    McpCallArgumentsDeltaEvent,
    OutputItemAddedEvent,
    OutputItemDoneEvent,
    OutputTextDeltaEvent,
    ReasoningSummaryPartAddedEvent,
    ReasoningSummaryTextDeltaEvent,
    ReasoningTextDeltaEvent,
    ResponseCompletedEvent,
    ResponseCreatedEvent,
    ResponseEvent,
    ResponseFailedEvent,
    ResponseIncompleteEvent,
    SNAPSHOT_EVENTS,
    parse_event,
)

Handler = Callable[[Document, Any, bool], Document]


# --- Addressing helpers ---


def _appends_at(length: int, index: int, clamp: bool) -> bool:
    # An occupied index is a duplicate delivery; a gap is tolerated only when clamping
    return index == length or (clamp and index > length)


def _clamp_index(index: int, length: int, clamp: bool) -> int | None:
    if length == 0 or index < 0:
        return None
    if index < length:
        return index
    return length - 1 if clamp else None


def _item_at(document: Document, index: int) -> OutputItem | None:
    if 0 <= index < len(document.output):
        return document.output[index]
    return None


def _open_item_at(
    document: Document, index: int, kind: type | tuple[type, ...]
) -> Any | None:
    item = _item_at(document, index)
    if not isinstance(item, kind) or item.status in SEALED_STATUSES:
        return None
    return item


def _replace_item(document: Document, index: int, item: OutputItem) -> Document:
    output = list(document.output)
    output[index] = item
    return document.model_copy(update={"output": output})


def _replace_part(
    document: Document,
    output_index: int,
    item: Message | Reasoning,
    field: str,
    part_index: int,
    part: Any,
) -> Document:
    parts = list(getattr(item, field))
    parts[part_index] = part
    return _replace_item(document, output_index, item.model_copy(update={field: parts}))


def _part_at(parts: list[Any], index: int) -> Any | None:
    if 0 <= index < len(parts):
        return parts[index]
    return None


# --- Handlers ---


def _adopt_snapshot(
    document: Document,
    event: ResponseCreatedEvent | ResponseCompletedEvent,
    clamp: bool,
) -> Document:
    snapshot = event.response
    if snapshot.error is not None and snapshot.status != "failed":
        snapshot = snapshot.model_copy(update={"status": "failed"})
    return snapshot


def _output_item_added(
    document: Document, event: OutputItemAddedEvent, clamp: bool
) -> Document:
    if not _appends_at(len(document.output), event.output_index, clamp):
        return document
    return document.model_copy(update={"output": [*document.output, event.item]})


def _output_item_done(
    document: Document, event: OutputItemDoneEvent, clamp: bool
) -> Document:
    # Some servers report output_index one past the last item on done
    index = _clamp_index(event.output_index, len(document.output), clamp)
    if index is None:
        return document

    current = document.output[index]
    item = event.item
    updates: dict[str, Any] = {}
    if item.id is None and current.id is not None:
        updates["id"] = current.id
    if isinstance(item, Reasoning) and item.status is None:
        updates["status"] = "completed"
    if updates:
        item = item.model_copy(update=updates)

    return _replace_item(document, index, item)


def _content_part_added(
    document: Document, event: ContentPartAddedEvent, clamp: bool
) -> Document:
    item = _open_item_at(document, event.output_index, (Message, Reasoning))
    if item is None:
        return document
    if not _appends_at(len(item.content), event.content_index, clamp):
        return document
    return _replace_item(
        document,
        event.output_index,
        item.model_copy(update={"content": [*item.content, event.part]}),
    )


def _content_part_done(
    document: Document, event: ContentPartDoneEvent, clamp: bool
) -> Document:
    index = _clamp_index(event.output_index, len(document.output), clamp)
    if index is None:
        return document
    item = _open_item_at(document, index, (Message, Reasoning))
    if item is None or _part_at(item.content, event.content_index) is None:
        return document
    return _replace_part(
        document, index, item, "content", event.content_index, event.part
    )


def _output_text_delta(
    document: Document, event: OutputTextDeltaEvent, clamp: bool
) -> Document:
    item = _open_item_at(document, event.output_index, Message)
    if item is None or item.role != "assistant":
        return document
    part = _part_at(item.content, event.content_index)
    if not isinstance(part, OutputText):
        return document
    return _replace_part(
        document,
        event.output_index,
        item,
        "content",
        event.content_index,
        part.model_copy(update={"text": part.text + event.delta}),
    )


def _reasoning_text_delta(
    document: Document, event: ReasoningTextDeltaEvent, clamp: bool
) -> Document:
    item = _open_item_at(document, event.output_index, Reasoning)
    if item is None:
        return document
    part = _part_at(item.content, event.content_index)
    if not isinstance(part, (ReasoningText, OutputText)):
        return document
    return _replace_part(
        document,
        event.output_index,
        item,
        "content",
        event.content_index,
        part.model_copy(update={"text": part.text + event.delta}),
    )


def _reasoning_summary_part_added(
    document: Document, event: ReasoningSummaryPartAddedEvent, clamp: bool
) -> Document:
    item = _open_item_at(document, event.output_index, Reasoning)
    if item is None:
        return document
    if not _appends_at(len(item.summary), event.summary_index, clamp):
        return document
    return _replace_item(
        document,
        event.output_index,
        item.model_copy(update={"summary": [*item.summary, event.part]}),
    )


def _reasoning_summary_text_delta(
    document: Document, event: ReasoningSummaryTextDeltaEvent, clamp: bool
) -> Document:
    item = _open_item_at(document, event.output_index, Reasoning)
    if item is None:
        return document
    part = _part_at(item.summary, event.summary_index)
    if part is None:
        return document
    return _replace_part(
        document,
        event.output_index,
        item,
        "summary",
        event.summary_index,
        part.model_copy(update={"text": part.text + event.delta}),
    )


def _accumulate(kind: type, field: str) -> Handler:
    def handler(document: Document, event: Any, clamp: bool) -> Document:
        item = _open_item_at(document, event.output_index, kind)
        if item is None:
            return document
        return _replace_item(
            document,
            event.output_index,
            item.model_copy(update={field: getattr(item, field) + event.delta}),
        )

    return handler


def _seal_function_call_output(status: str) -> Handler:
    def handler(document: Document, event: Any, clamp: bool) -> Document:
        item = _open_item_at(document, event.output_index, FunctionCallOutput)
        if item is None or item.call_id != event.item.call_id:
            return document
        sealed = event.item.model_copy(
            update={"status": status, "id": event.item.id or item.id}
        )
        return _replace_item(document, event.output_index, sealed)

    return handler


def _ignore(document: Document, event: Any, clamp: bool) -> Document:
    return document


_HANDLERS: dict[type, Handler] = {
    ResponseCreatedEvent: _adopt_snapshot,
    ResponseCompletedEvent: _adopt_snapshot,
    ResponseFailedEvent: _adopt_snapshot,
    ResponseIncompleteEvent: _adopt_snapshot,
    OutputItemAddedEvent: _output_item_added,
    OutputItemDoneEvent: _output_item_done,
    ContentPartAddedEvent: _content_part_added,
    ContentPartDoneEvent: _content_part_done,
    OutputTextDeltaEvent: _output_text_delta,
    ReasoningTextDeltaEvent: _reasoning_text_delta,
    ReasoningSummaryPartAddedEvent: _reasoning_summary_part_added,
    ReasoningSummaryTextDeltaEvent: _reasoning_summary_text_delta,
    FunctionCallArgumentsDeltaEvent: _accumulate(FunctionCall, "arguments"),
    McpCallArgumentsDeltaEvent: _accumulate(McpCall, "arguments"),
    CodeInterpreterCallCodeDeltaEvent: _accumulate(CodeInterpreterCall, "code"),
    FunctionCallOutputCompletedEvent: _seal_function_call_output("completed"),
    FunctionCallOutputIncompleteEvent: _seal_function_call_output("incomplete"),
    ErrorEvent: _ignore,
}


# --- Public API ---


def fold(
    document: Document | None,
    event: ResponseEvent | Mapping[str, Any],
    *,
    clamp_indices: bool = True,
) -> Document | None:
    """
    Apply a single event to ``document``.

    ``event`` may also be a raw mapping; it is validated first and dropped if
    it is not a known, well-formed event. Until a snapshot event arrives there
    is no document to fold into, so ``None`` stays ``None``.

    With ``clamp_indices=False`` an ``output_item.done`` (or
    ``content_part.done``) past the last item is ignored instead of being
    applied to the last item.
    """
    handler = _HANDLERS.get(type(event))
    if handler is None:
        parsed = parse_event(event)
        if parsed is None:
            return document
        event = parsed
        handler = _HANDLERS[type(event)]
    if document is None:
        if not isinstance(event, SNAPSHOT_EVENTS):
            return None
        return _adopt_snapshot(document, event, clamp_indices)  # type: ignore[arg-type]

    return handler(document, event, clamp_indices)


def fold_all(
    document: Document | None,
    events: Iterable[ResponseEvent | Mapping[str, Any]],
    *,
    clamp_indices: bool = True,
) -> Document | None:
    for event in events:
        document = fold(document, event, clamp_indices=clamp_indices)
    return document


def seal_open_items(document: Document, status: str = "incomplete") -> Document:
    """Mark every unsealed item (and the document itself) with ``status``."""
    output = [
        item
        if item.status in SEALED_STATUSES or item.status == "failed"
        else item.model_copy(update={"status": status})
        for item in document.output
    ]
    updates: dict[str, Any] = {}
    if any(new is not old for new, old in zip(output, document.output, strict=True)):
        updates["output"] = output
    if document.status == "in_progress":
        updates["status"] = status
    if not updates:
        return document
    return document.model_copy(update=updates)
