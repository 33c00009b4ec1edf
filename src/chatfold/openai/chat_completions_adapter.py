"""
Chat Completions -> Responses event adapter.

A Chat Completions stream carries nothing but a growing ``content`` string.
``DeltaAdapter`` synthesizes the item/part lifecycle around it so that the
same reducer can fold it: one assistant message at ``output_index`` 0 with a
single ``output_text`` part.

Image-capable upstreams attach ``images`` to a delta. Each image seals the
current message, becomes an ``image_generation_call`` item of its own, and a
fresh message is opened after it at the next ``output_index``.
"""

import time
from collections.abc import AsyncIterable, AsyncIterator, Sequence
from logging import getLogger
from typing import Any

import openai

from ..config import ResponseParams, resolve_model
from ..errors import EmptyStreamError, TransportError
from ..producer import ResponseProducer
from ..typing.document import (
    Document,
    ImageGenerationCall,
    Message,
    OutputItem,
    OutputText,
    Usage,
    new_id,
)
from ..typing.events import (
    ContentPartAddedEvent,
    ContentPartDoneEvent,
    OutputItemAddedEvent,
    OutputItemDoneEvent,
    OutputTextDeltaEvent,
    ResponseCompletedEvent,
    ResponseCreatedEvent,
    ResponseEvent,
)
from ..typing.history import HistoryEntry, to_input_items
from . import (
    OpenAIAsyncClient,
    OpenAIAsyncStream,
    OpenAICompletionChunk,
    OpenAICompletionUsage,
)
from .input_converters import to_chat_messages, to_chat_tools

logger = getLogger(__name__)


def from_chat_usage(raw_usage: OpenAICompletionUsage) -> Usage:
    return Usage(
        input_tokens=raw_usage.prompt_tokens,
        output_tokens=raw_usage.completion_tokens,
        total_tokens=raw_usage.total_tokens,
    )


def image_data(url: str) -> str:
    """Strip the ``data:<mime>;base64,`` prefix of a data URL."""
    return url.split(",", 1)[1] if "," in url else url


def image_urls(images: Any) -> list[str]:
    urls: list[str] = []
    for image in images or []:
        image_url = (
            image.get("image_url")
            if isinstance(image, dict)
            else getattr(image, "image_url", None)
        )
        url = (
            image_url.get("url")
            if isinstance(image_url, dict)
            else getattr(image_url, "url", None)
        )
        if isinstance(url, str) and url:
            urls.append(url)
    return urls


class DeltaAdapter:
    """Synthesizes canonical events from plain text fragments, one tick at a time."""

    def __init__(
        self,
        model: str,
        *,
        instructions: str | None = None,
        tools: list[dict[str, Any]] | None = None,
        temperature: float | None = None,
    ) -> None:
        self._model = model
        self._instructions = instructions
        self._tools = tools or []
        self._temperature = temperature

        self._sequence_number = 0
        self._output_index = 0
        self._document: Document | None = None
        self._sealed: list[OutputItem] = []
        self._message_id = new_id("msg")
        self._fragments: list[str] = []
        self._usage: Usage | None = None
        self._finished = False

    @property
    def started(self) -> bool:
        return self._document is not None

    @property
    def text(self) -> str:
        return "".join(self._fragments)

    def _next_sequence_number(self) -> int:
        sequence_number = self._sequence_number
        self._sequence_number += 1
        return sequence_number

    def _open(self) -> list[ResponseEvent]:
        self._document = Document(
            id=new_id("resp"),
            created_at=int(time.time()),
            model=self._model,
            instructions=self._instructions,
            tools=self._tools,
            temperature=self._temperature,
            status="in_progress",
            output=[],
        )
        return [
            ResponseCreatedEvent(
                response=self._document,
                sequence_number=self._next_sequence_number(),
            ),
            *self._open_message(),
        ]

    def _open_message(self) -> list[ResponseEvent]:
        message = Message(
            id=self._message_id, role="assistant", content=[], status="in_progress"
        )
        return [
            OutputItemAddedEvent(
                output_index=self._output_index,
                item=message,
                sequence_number=self._next_sequence_number(),
            ),
            ContentPartAddedEvent(
                item_id=self._message_id,
                output_index=self._output_index,
                content_index=0,
                part=OutputText(),
                sequence_number=self._next_sequence_number(),
            ),
        ]

    def push(
        self, fragment: str | None, *, usage: Usage | None = None
    ) -> list[ResponseEvent]:
        """
        Feed one upstream tick.

        The first tick opens the response, its message and its text part. A
        tick without text (role-only or usage-only chunks) still counts as a
        received response but emits no delta.
        """
        if self._finished:
            raise RuntimeError("DeltaAdapter already finished")

        events: list[ResponseEvent] = []
        if self._document is None:
            events.extend(self._open())
        if usage is not None:
            self._usage = usage
        if fragment is None:
            return events

        self._fragments.append(fragment)
        events.append(
            OutputTextDeltaEvent(
                item_id=self._message_id,
                output_index=self._output_index,
                content_index=0,
                delta=fragment,
                logprobs=[],
                sequence_number=self._next_sequence_number(),
            )
        )
        return events

    def push_images(self, urls: Sequence[str]) -> list[ResponseEvent]:
        """
        Insert generated images between the text before and after them.

        The open message is sealed with the text so far, every image becomes
        a completed ``image_generation_call`` item, and a new empty message
        takes over the following text.
        """
        if self._finished:
            raise RuntimeError("DeltaAdapter already finished")

        events: list[ResponseEvent] = []
        if self._document is None:
            events.extend(self._open())
        if not urls:
            return events

        events.extend(self._close_message())
        self._output_index += 1
        for url in urls:
            image = ImageGenerationCall(
                id=new_id("ig"), result=image_data(url), status="completed"
            )
            self._sealed.append(image)
            events.append(
                OutputItemAddedEvent(
                    output_index=self._output_index,
                    item=image,
                    sequence_number=self._next_sequence_number(),
                )
            )
            events.append(
                OutputItemDoneEvent(
                    output_index=self._output_index,
                    item=image,
                    sequence_number=self._next_sequence_number(),
                )
            )
            self._output_index += 1

        self._message_id = new_id("msg")
        self._fragments = []
        events.extend(self._open_message())
        return events

    def _close_message(self) -> list[ResponseEvent]:
        part = OutputText(text=self.text)
        message = Message(
            id=self._message_id, role="assistant", content=[part], status="completed"
        )
        self._sealed.append(message)
        return [
            ContentPartDoneEvent(
                item_id=self._message_id,
                output_index=self._output_index,
                content_index=0,
                part=part,
                sequence_number=self._next_sequence_number(),
            ),
            OutputItemDoneEvent(
                output_index=self._output_index,
                item=message,
                sequence_number=self._next_sequence_number(),
            ),
        ]

    def finish(self) -> list[ResponseEvent]:
        """Close the open text part, its message and the response."""
        if self._document is None:
            raise EmptyStreamError()
        if self._finished:
            return []
        self._finished = True

        events = self._close_message()
        document = self._document.model_copy(
            update={
                "status": "completed",
                "output": list(self._sealed),
                "usage": self._usage,
            }
        )
        return [
            *events,
            ResponseCompletedEvent(
                response=document, sequence_number=self._next_sequence_number()
            ),
        ]


async def adapt_deltas(
    fragments: AsyncIterable[str | None], adapter: DeltaAdapter
) -> AsyncIterator[ResponseEvent]:
    async for fragment in fragments:
        for event in adapter.push(fragment):
            yield event
    for event in adapter.finish():
        yield event


class ChatCompletionsProducer(ResponseProducer):
    """Producer for upstreams that only expose the Chat Completions stream."""

    def __init__(
        self,
        client: OpenAIAsyncClient,
        *,
        producer_id: str | None = None,
        default_params: ResponseParams | None = None,
        include_usage: bool = False,
    ) -> None:
        super().__init__(producer_id=producer_id, default_params=default_params)

        self._client = client
        self._include_usage = include_usage

    @property
    def client(self) -> OpenAIAsyncClient:
        return self._client

    async def stream_events(
        self,
        history: Sequence[HistoryEntry],
        params: ResponseParams | None = None,
    ) -> AsyncIterator[ResponseEvent]:
        _params = self.resolve_params(params)
        model = resolve_model(_params)
        instructions = _params.get("instructions")
        tools = _params.get("tools")

        kwargs: dict[str, Any] = {}
        chat_tools = to_chat_tools(tools)
        if chat_tools:
            kwargs["tools"] = chat_tools
        if _params.get("temperature") is not None:
            kwargs["temperature"] = _params["temperature"]
        if self._include_usage:
            kwargs["stream_options"] = {"include_usage": True}

        logger.debug(
            "Opening Chat Completions stream (producer=%s, model=%s)",
            self.producer_id,
            model,
        )

        try:
            stream: OpenAIAsyncStream[OpenAICompletionChunk] = (
                await self._client.chat.completions.create(
                    model=model,
                    messages=to_chat_messages(to_input_items(history), instructions),
                    stream=True,
                    **kwargs,
                )
            )
        except openai.APIError as exc:
            raise TransportError(str(exc)) from exc

        adapter = DeltaAdapter(
            model,
            instructions=instructions,
            tools=tools,
            temperature=_params.get("temperature"),
        )
        try:
            async for chunk in stream:
                fragment = None
                if chunk.choices:
                    delta = chunk.choices[0].delta
                    urls = image_urls(getattr(delta, "images", None))
                    if urls:
                        for event in adapter.push_images(urls):
                            yield event
                    fragment = delta.content
                usage = from_chat_usage(chunk.usage) if chunk.usage else None
                for event in adapter.push(fragment, usage=usage):
                    yield event
        except openai.APIError as exc:
            raise TransportError(str(exc)) from exc
        finally:
            await stream.close()

        for event in adapter.finish():
            yield event
