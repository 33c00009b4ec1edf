import json
from collections.abc import AsyncIterable, AsyncIterator, Iterable, Iterator, Sequence
from typing import Any

import httpx

from ..config import APIProvider, ResponseParams, resolve_model
from ..errors import EmptyStreamError, ProviderError, TransportError
from ..producer import ResponseProducer
from ..typing.events import ErrorEvent, ResponseEvent, parse_event
from ..typing.history import HistoryEntry, to_input_items

Frame = tuple[str, str]


class SSEDecoder:
    """
    Incremental text/event-stream parser.

    Feed it one line at a time (without the trailing newline); a blank line
    completes a record. Comment lines are ignored and repeated ``data`` lines
    are joined with newlines. A record left unterminated at EOF is dropped.
    """

    def __init__(self) -> None:
        self._event: str | None = None
        self._data: list[str] = []

    def feed(self, line: str) -> Frame | None:
        line = line.rstrip("\r\n")
        if not line:
            if self._event is None and not self._data:
                return None
            frame = (self._event or "message", "\n".join(self._data))
            self._event = None
            self._data = []
            return frame
        if line.startswith(":"):
            return None

        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "event":
            self._event = value
        elif field == "data":
            self._data.append(value)
        return None


def decode_frames(lines: Iterable[str]) -> Iterator[Frame]:
    decoder = SSEDecoder()
    for line in lines:
        frame = decoder.feed(line)
        if frame is not None:
            yield frame


async def adecode_frames(lines: AsyncIterable[str]) -> AsyncIterator[Frame]:
    decoder = SSEDecoder()
    async for line in lines:
        frame = decoder.feed(line)
        if frame is not None:
            yield frame


def event_from_frame(name: str, data: str) -> ResponseEvent | None:
    try:
        payload = json.loads(data)
    except json.JSONDecodeError:
        return None
    if not isinstance(payload, dict):
        return None
    payload.setdefault("type", name)
    return parse_event(payload)


class RelayProducer(ResponseProducer):
    """Reads canonical events back out of a relay's event stream."""

    provider_name = "chatfold.relay"

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        provider: APIProvider,
        *,
        producer_id: str | None = None,
        default_params: ResponseParams | None = None,
    ) -> None:
        super().__init__(producer_id=producer_id, default_params=default_params)

        base_url = provider.get("base_url")
        if not base_url:
            raise ValueError("Relay provider must define a base_url")

        self._http_client = http_client
        self._url = base_url.rstrip("/") + "/relay/responses"
        self._api_key = provider.get("api_key")

    @property
    def url(self) -> str:
        return self._url

    def _request_body(self, history: Sequence[HistoryEntry], params: ResponseParams) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": resolve_model(params),
            "input": to_input_items(history),
        }
        for key in ("instructions", "tools", "temperature"):
            if params.get(key) is not None:
                body[key] = params[key]  # type: ignore[literal-required]
        return body

    async def stream_events(
        self,
        history: Sequence[HistoryEntry],
        params: ResponseParams | None = None,
    ) -> AsyncIterator[ResponseEvent]:
        body = self._request_body(history, self.resolve_params(params))
        headers = {"Accept": "text/event-stream"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"

        received = False
        try:
            async with self._http_client.stream(
                "POST", self._url, json=body, headers=headers
            ) as response:
                if response.status_code >= 400:
                    detail = (await response.aread()).decode("utf-8", errors="replace")
                    raise TransportError(
                        f"Relay returned HTTP {response.status_code}: {detail}"
                    )
                async for name, data in adecode_frames(response.aiter_lines()):
                    event = event_from_frame(name, data)
                    if event is None:
                        continue
                    if isinstance(event, ErrorEvent):
                        raise ProviderError(event.message, code=event.code)
                    received = True
                    yield event
        except httpx.HTTPError as exc:
            raise TransportError(str(exc)) from exc

        if not received:
            raise EmptyStreamError()
