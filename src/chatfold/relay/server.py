import logging
from collections.abc import AsyncIterator
from typing import Any

import openai
from fastapi import FastAPI, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from ..config import DEFAULT_MODEL, RelaySettings, get_relay_settings
from ..errors import UnsupportedToolError
from ..openai import OpenAIAsyncClient, OpenAIAsyncStream, OpenAICompletionChunk
from ..openai.client import create_client
from ..openai.input_converters import to_chat_messages, to_chat_tools
from .encoder import RelayEncoder, RelayTick, encode_stream, ticks_from_chunk

logger = logging.getLogger(__name__)

RELAY_PATH = "/api/v1/relay/responses"


class RelayRequest(BaseModel):
    model: str | None = None
    input: list[dict[str, Any]] = Field(default_factory=list)
    instructions: str | None = None
    tools: list[dict[str, Any]] | None = None
    temperature: float | None = None


async def _relay_ticks(
    upstream: OpenAIAsyncStream[OpenAICompletionChunk], turn_id: str
) -> AsyncIterator[RelayTick]:
    try:
        async for chunk in upstream:
            for tick in ticks_from_chunk(chunk):
                yield tick
    except openai.APIError as exc:
        logger.warning("Upstream failed during relay turn %s: %s", turn_id, exc)
        raise
    finally:
        await upstream.close()
        logger.info("Relay turn %s closed", turn_id)


def create_app(client: OpenAIAsyncClient | None = None) -> FastAPI:
    app = FastAPI(title="chatfold relay")

    def get_client() -> OpenAIAsyncClient:
        nonlocal client
        if client is None:
            client = create_client()
        return client

    @app.get("/healthz")
    async def healthz() -> dict[str, str]:
        return {"status": "ok"}

    @app.post(RELAY_PATH)
    async def relay_responses(request: RelayRequest) -> StreamingResponse:
        model = request.model or DEFAULT_MODEL
        try:
            messages = to_chat_messages(request.input, request.instructions)
            tools = to_chat_tools(request.tools)
        except UnsupportedToolError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

        kwargs: dict[str, Any] = {}
        if tools:
            kwargs["tools"] = tools
        if request.temperature is not None:
            kwargs["temperature"] = request.temperature

        try:
            upstream = await get_client().chat.completions.create(
                model=model, messages=messages, stream=True, **kwargs
            )
        except openai.APIError as exc:
            logger.warning("Upstream request failed: %s", exc)
            raise HTTPException(status_code=502, detail=str(exc)) from exc

        encoder = RelayEncoder(model=model)
        logger.info("Relaying turn %s (model=%s)", encoder.turn_id, model)

        return StreamingResponse(
            encode_stream(_relay_ticks(upstream, encoder.turn_id), encoder),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache"},
        )

    return app


def serve(settings: RelaySettings | None = None) -> None:
    import uvicorn

    _settings = settings or get_relay_settings()
    app = create_app(create_client(_settings["upstream"]))
    uvicorn.run(app, host=_settings["host"], port=_settings["port"])


if __name__ == "__main__":
    serve()
