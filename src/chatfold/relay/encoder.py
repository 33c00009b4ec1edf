"""
Relay encoder.

Multiplexes a foreign delta stream (answer text plus a parallel reasoning
channel) into canonical events and frames each one as a text/event-stream
record::

    event: <event.type>
    data: <json>
    <blank line>

At most one item is open at a time: a tick on a different channel first
closes the open item with ``response.output_item.done``. The encoder never
writes ``response.completed``; the stream closing is the only end signal, so
the last item stays ``in_progress`` on the receiving side.
"""

import time
from collections.abc import AsyncIterable, AsyncIterator
from typing import Literal, TypeAlias
from uuid import uuid4

from pydantic import BaseModel, ConfigDict

from ..openai import OpenAICompletionChunk
from ..typing.document import (
    Document,
    Message,
    OutputText,
    Reasoning,
    SummaryPart,
    new_id,
)
from ..typing.events import (
    ContentPartAddedEvent,
    OutputItemAddedEvent,
    OutputItemDoneEvent,
    OutputTextDeltaEvent,
    ReasoningSummaryPartAddedEvent,
    ReasoningSummaryTextDeltaEvent,
    ResponseCreatedEvent,
    ResponseEvent,
)

RelayChannel: TypeAlias = Literal["text", "reasoning"]


class RelayTick(BaseModel):
    channel: RelayChannel
    text: str

    model_config = ConfigDict(frozen=True)


def ticks_from_chunk(chunk: OpenAICompletionChunk) -> list[RelayTick]:
    """
    Classify a chat completion chunk by which fields it populates.

    Reasoning-capable servers put chain-of-thought in ``reasoning_content``
    (or ``reasoning``) next to the regular ``content`` field. A chunk that
    fills both yields the reasoning tick first.
    """
    if not chunk.choices:
        return []
    delta = chunk.choices[0].delta
    ticks: list[RelayTick] = []
    reasoning = getattr(delta, "reasoning_content", None) or getattr(
        delta, "reasoning", None
    )
    if isinstance(reasoning, str) and reasoning:
        ticks.append(RelayTick(channel="reasoning", text=reasoning))
    if delta.content:
        ticks.append(RelayTick(channel="text", text=delta.content))
    return ticks


def encode_frame(event: ResponseEvent) -> str:
    data = event.model_dump_json(exclude_none=True)
    return f"event: {event.type}\ndata: {data}\n\n"


class RelayEncoder:
    def __init__(self, turn_id: str | None = None, *, model: str = "") -> None:
        self._turn_id = turn_id or uuid4().hex
        self._response_id = new_id("resp")
        self._model = model

        self._sequence_number = 0
        self._started = False
        self._next_output_index = 0
        self._open_channel: RelayChannel | None = None
        self._open_index = -1
        self._open_text: list[str] = []

    @property
    def turn_id(self) -> str:
        return self._turn_id

    @property
    def response_id(self) -> str:
        return self._response_id

    @property
    def open_channel(self) -> RelayChannel | None:
        return self._open_channel

    @property
    def reasoning_item_id(self) -> str:
        return f"rs_{self._turn_id}"

    @property
    def message_item_id(self) -> str:
        return f"msg_{self._turn_id}"

    def _next_sequence_number(self) -> int:
        sequence_number = self._sequence_number
        self._sequence_number += 1
        return sequence_number

    def start(self) -> list[ResponseEvent]:
        """Emit ``response.created`` once; later calls emit nothing."""
        if self._started:
            return []
        self._started = True
        document = Document(
            id=self._response_id,
            created_at=int(time.time()),
            model=self._model,
            status="in_progress",
            output=[],
        )
        return [
            ResponseCreatedEvent(
                response=document, sequence_number=self._next_sequence_number()
            )
        ]

    def push(self, tick: RelayTick) -> list[ResponseEvent]:
        events = self.start()
        if tick.channel != self._open_channel:
            events.extend(self._close_open_item())
            events.extend(self._open_item(tick.channel))

        self._open_text.append(tick.text)
        if tick.channel == "reasoning":
            events.append(
                ReasoningSummaryTextDeltaEvent(
                    item_id=self.reasoning_item_id,
                    output_index=self._open_index,
                    summary_index=0,
                    delta=tick.text,
                    sequence_number=self._next_sequence_number(),
                )
            )
        else:
            events.append(
                OutputTextDeltaEvent(
                    item_id=self.message_item_id,
                    output_index=self._open_index,
                    content_index=0,
                    delta=tick.text,
                    logprobs=[],
                    sequence_number=self._next_sequence_number(),
                )
            )
        return events

    def _open_item(self, channel: RelayChannel) -> list[ResponseEvent]:
        self._open_channel = channel
        self._open_index = self._next_output_index
        self._next_output_index += 1

        if channel == "reasoning":
            return [
                OutputItemAddedEvent(
                    output_index=self._open_index,
                    item=Reasoning(
                        id=self.reasoning_item_id, summary=[], status="in_progress"
                    ),
                    sequence_number=self._next_sequence_number(),
                ),
                ReasoningSummaryPartAddedEvent(
                    item_id=self.reasoning_item_id,
                    output_index=self._open_index,
                    summary_index=0,
                    part=SummaryPart(),
                    sequence_number=self._next_sequence_number(),
                ),
            ]
        return [
            OutputItemAddedEvent(
                output_index=self._open_index,
                item=Message(
                    id=self.message_item_id,
                    role="assistant",
                    content=[],
                    status="in_progress",
                ),
                sequence_number=self._next_sequence_number(),
            ),
            ContentPartAddedEvent(
                item_id=self.message_item_id,
                output_index=self._open_index,
                content_index=0,
                part=OutputText(),
                sequence_number=self._next_sequence_number(),
            ),
        ]

    def _close_open_item(self) -> list[ResponseEvent]:
        if self._open_channel is None:
            return []

        text = "".join(self._open_text)
        item: Reasoning | Message
        if self._open_channel == "reasoning":
            item = Reasoning(
                id=self.reasoning_item_id,
                summary=[SummaryPart(text=text)],
                status="completed",
            )
        else:
            item = Message(
                id=self.message_item_id,
                role="assistant",
                content=[OutputText(text=text)],
                status="completed",
            )

        self._open_channel = None
        self._open_text = []
        return [
            OutputItemDoneEvent(
                output_index=self._open_index,
                item=item,
                sequence_number=self._next_sequence_number(),
            )
        ]


async def encode_stream(
    ticks: AsyncIterable[RelayTick | None], encoder: RelayEncoder
) -> AsyncIterator[bytes]:
    for event in encoder.start():
        yield encode_frame(event).encode("utf-8")
    async for tick in ticks:
        if tick is None:
            continue
        for event in encoder.push(tick):
            yield encode_frame(event).encode("utf-8")
