from collections.abc import AsyncIterator, Sequence
from logging import getLogger
from typing import Any

import openai

from ..config import ResponseParams, reasoning_for, resolve_model
from ..errors import EmptyStreamError, ProviderError, TransportError
from ..producer import ResponseProducer
from ..typing.events import ErrorEvent, ResponseEvent, parse_event
from ..typing.history import HistoryEntry, to_input_items
from . import OpenAIAsyncClient, OpenAIAsyncStream, OpenAIResponseStreamEvent

logger = getLogger(__name__)


class OpenAIResponsesProducer(ResponseProducer):
    """Pass-through producer for an upstream that already speaks the Responses stream."""

    def __init__(
        self,
        client: OpenAIAsyncClient,
        *,
        producer_id: str | None = None,
        default_params: ResponseParams | None = None,
    ) -> None:
        super().__init__(producer_id=producer_id, default_params=default_params)

        self._client = client

    @property
    def client(self) -> OpenAIAsyncClient:
        return self._client

    def _request_kwargs(self, params: ResponseParams) -> dict[str, Any]:
        model = resolve_model(params)
        kwargs: dict[str, Any] = {"model": model, "stream": True}
        reasoning = reasoning_for(model)
        if reasoning is not None:
            kwargs["reasoning"] = reasoning
        if params.get("instructions"):
            kwargs["instructions"] = params["instructions"]
        if params.get("tools"):
            kwargs["tools"] = params["tools"]
        if params.get("temperature") is not None:
            kwargs["temperature"] = params["temperature"]
        return kwargs

    async def stream_events(
        self,
        history: Sequence[HistoryEntry],
        params: ResponseParams | None = None,
    ) -> AsyncIterator[ResponseEvent]:
        kwargs = self._request_kwargs(self.resolve_params(params))
        logger.debug(
            "Opening Responses stream (producer=%s, model=%s)",
            self.producer_id,
            kwargs["model"],
        )
        try:
            stream: OpenAIAsyncStream[OpenAIResponseStreamEvent] = (
                await self._client.responses.create(
                    input=to_input_items(history),  # type: ignore[arg-type]
                    **kwargs,
                )
            )
        except openai.APIError as exc:
            raise TransportError(str(exc)) from exc

        received = False
        try:
            async for raw_event in stream:
                event = parse_event(raw_event)
                if event is None:
                    continue
                if isinstance(event, ErrorEvent):
                    raise ProviderError(event.message, code=event.code)
                received = True
                yield event
        except openai.APIError as exc:
            raise TransportError(str(exc)) from exc
        finally:
            await stream.close()

        if not received:
            raise EmptyStreamError()
