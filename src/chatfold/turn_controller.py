"""
Turn controller.

Drives one model turn at a time: opens a single producer stream, folds every
event into the current ``Document``, notifies observers and schedules
persistence. A turn ends in exactly one of three states:

* ``completed``: the producer delivered a terminal snapshot without an error;
* ``failed``: the producer raised or the snapshot carries an error. A
  ``refusal`` part with the error text is appended so the failure is visible
  in the document itself;
* ``incomplete``: the turn was cancelled, or the stream ended without a
  terminal event. The document is left exactly as last folded.
"""

import asyncio
import time
from collections.abc import Callable, Sequence
from contextlib import aclosing
from logging import getLogger
from typing import Literal, TypeAlias

import httpx
import openai
from opentelemetry.trace import Status, StatusCode

from .collaborators import DocumentObserver, DocumentStore, ToolExecutor
from .config import ResponseParams, resolve_model
from .errors import ChatfoldError, EmptyStreamError, ProviderError
from .producer import ResponseProducer
from .reducer import fold, seal_open_items
from .telemetry import TURN_SPAN_NAME, get_tracer
from .tool_orchestrator import DEFAULT_MAX_TOOL_ROUNDS, ToolOrchestrator, pending_calls
from .typing.document import Document, Message, Refusal, ResponseError, new_id
from .typing.events import OutputItemAddedEvent, ResponseEvent
from .typing.history import HistoryEntry, truncate_before

logger = getLogger(__name__)

TurnState: TypeAlias = Literal[
    "idle", "in_progress", "completed", "incomplete", "failed"
]

DEFAULT_PERSIST_INTERVAL = 0.05


class TurnController:
    def __init__(
        self,
        producer: ResponseProducer,
        *,
        conversation_id: str | None = None,
        store: DocumentStore | None = None,
        observers: Sequence[DocumentObserver] = (),
        tool_executor: ToolExecutor | None = None,
        max_tool_rounds: int = DEFAULT_MAX_TOOL_ROUNDS,
        persist_interval: float = DEFAULT_PERSIST_INTERVAL,
        clamp_indices: bool = True,
        seal_on_cancel: bool = False,
    ) -> None:
        self._producer = producer
        self._conversation_id = conversation_id or new_id("conv")
        self._store = store
        self._observers: list[DocumentObserver] = list(observers)
        self._tools = (
            ToolOrchestrator(
                tool_executor, max_rounds=max_tool_rounds, clamp_indices=clamp_indices
            )
            if tool_executor is not None
            else None
        )
        self._persist_interval = persist_interval
        self._clamp_indices = clamp_indices
        self._seal_on_cancel = seal_on_cancel

        self._document: Document | None = None
        self._state: TurnState = "idle"
        self._task: asyncio.Task[Document | None] | None = None
        self._streaming: asyncio.Task[Document | None] | None = None
        self._generation = 0
        self._persist_handle: asyncio.TimerHandle | None = None
        self._pending_saves: set[asyncio.Task[None]] = set()

    @property
    def producer(self) -> ResponseProducer:
        return self._producer

    @property
    def conversation_id(self) -> str:
        return self._conversation_id

    @property
    def document(self) -> Document | None:
        return self._document

    @property
    def state(self) -> TurnState:
        return self._state

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    def subscribe(self, observer: DocumentObserver) -> Callable[[], None]:
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    # --- Turn lifecycle ---

    def start(
        self, history: Sequence[HistoryEntry], params: ResponseParams | None = None
    ) -> "asyncio.Task[Document | None]":
        """
        Start a new turn over a snapshot of ``history``.

        An active turn is cancelled first and the new one waits for it to
        wind down, so at most one turn is ever in progress. A turn replaced
        before it began streaming resolves to ``None``.
        """
        previous = self._task
        self._interrupt()
        self._task = asyncio.create_task(
            self._run_turn(list(history), params, previous, self._generation)
        )
        return self._task

    async def run(
        self, history: Sequence[HistoryEntry], params: ResponseParams | None = None
    ) -> Document | None:
        return await self.start(history, params)

    def cancel(self) -> bool:
        return self._interrupt()

    def _interrupt(self) -> bool:
        # A turn still waiting on its predecessor is only marked stale
        self._generation += 1
        task = self._task
        if task is None or task.done():
            return False
        if task is self._streaming:
            task.cancel()
        return True

    def retry_from(
        self,
        history: Sequence[HistoryEntry],
        entry_id: str,
        params: ResponseParams | None = None,
    ) -> "asyncio.Task[Document | None]":
        """Resubmit everything before ``entry_id`` as a fresh turn."""
        return self.start(truncate_before(history, entry_id), params)

    async def run_with_tools(
        self, history: Sequence[HistoryEntry], params: ResponseParams | None = None
    ) -> list[Document]:
        if self._tools is None:
            raise ValueError("run_with_tools requires a tool_executor")

        conversation = list(history)
        documents: list[Document] = []
        rounds = 0
        while True:
            document = await self.run(conversation, params)
            if document is None:
                break
            documents.append(document)
            if self._state != "completed" or not pending_calls(document):
                break
            if rounds >= self._tools.max_rounds:
                logger.info(
                    "Max tool rounds reached: %d. Stopping tool call loop.",
                    self._tools.max_rounds,
                )
                break

            document = await self._tools.call_tools(document, on_update=self._publish)
            self._persist_now(document)
            documents[-1] = document
            conversation.append(document)
            rounds += 1

        return documents

    async def wait_persisted(self) -> None:
        if self._persist_handle is not None:
            self._persist_handle.cancel()
            self._flush()
        if self._pending_saves:
            await asyncio.gather(*self._pending_saves, return_exceptions=True)

    async def _run_turn(
        self,
        history: list[HistoryEntry],
        params: ResponseParams | None,
        previous: "asyncio.Task[Document | None] | None",
        generation: int,
    ) -> Document | None:
        if previous is not None:
            try:
                await asyncio.wait([previous])
            except asyncio.CancelledError:
                generation = -1
        if generation != self._generation:
            logger.info(
                "Turn in conversation %s replaced before it started",
                self._conversation_id,
            )
            self._state = "incomplete"
            return None
        self._streaming = asyncio.current_task()

        _params = self._producer.resolve_params(params)
        model = resolve_model(_params)
        self._document = None
        self._state = "in_progress"
        logger.info(
            "Starting turn in conversation %s (producer=%s, model=%s)",
            self._conversation_id,
            self._producer.producer_id,
            model,
        )

        tracer = get_tracer()
        with tracer.start_as_current_span(
            TURN_SPAN_NAME,
            attributes={
                "gen_ai.provider.name": self._producer.provider_name,
                "gen_ai.request.model": model,
            },
        ) as span:
            try:
                async with aclosing(
                    self._producer.stream_events(history, params)
                ) as events:
                    async for event in events:
                        self._apply(event)
            except asyncio.CancelledError:
                logger.info("Turn in conversation %s cancelled", self._conversation_id)
                self._finish_incomplete()
            except ProviderError as exc:
                self._fail(exc.message, exc.code)
            except (ChatfoldError, openai.APIError, httpx.HTTPError) as exc:
                self._fail(str(exc))
            except Exception as exc:
                logger.exception(
                    "Unexpected error in conversation %s", self._conversation_id
                )
                self._fail(str(exc) or exc.__class__.__name__)
            else:
                self._finish()

            if self._document is not None:
                span.set_attribute("gen_ai.response.id", self._document.id)
            span.set_attribute("chatfold.turn.state", self._state)
            if self._state == "failed":
                error = self._document.error if self._document else None
                span.set_status(
                    Status(StatusCode.ERROR, error.message if error else None)
                )

        return self._document

    def _apply(self, event: ResponseEvent) -> None:
        if isinstance(event, OutputItemAddedEvent) and event.item.id is None:
            item = event.item.model_copy(update={"id": new_id("item")})
            event = event.model_copy(update={"item": item})

        document = fold(self._document, event, clamp_indices=self._clamp_indices)
        if document is None or document is self._document:
            return
        self._publish(document)
        self._schedule_persist()

    def _publish(self, document: Document) -> None:
        self._document = document
        for observer in list(self._observers):
            try:
                observer(document)
            except Exception:
                logger.exception("Observer %r failed", observer)

    def _finish(self) -> None:
        document = self._document
        if document is None:
            self._fail(str(EmptyStreamError()))
        elif document.error is not None or document.status == "failed":
            error = document.error
            self._fail(
                error.message if error else "response failed",
                error.code if error else None,
            )
        elif document.status == "completed":
            self._state = "completed"
            logger.info("Turn %s completed", document.id)
            self._persist_now(document)
        else:
            self._finish_incomplete()

    def _finish_incomplete(self) -> None:
        self._state = "incomplete"
        document = self._document
        if document is None:
            return
        if self._seal_on_cancel:
            sealed = seal_open_items(document)
            if sealed is not document:
                self._publish(sealed)
                document = sealed
        self._persist_now(document)

    def _fail(self, message: str, code: str | None = None) -> None:
        logger.warning(
            "Turn in conversation %s failed: %s", self._conversation_id, message
        )
        document = self._document or Document(
            id=new_id("resp"),
            model=resolve_model(self._producer.default_params),
            created_at=time.time(),
        )
        refusal = Message(
            id=new_id("msg"),
            role="assistant",
            content=[Refusal(refusal=message)],
            status="incomplete",
        )
        failed = document.model_copy(
            update={
                "status": "failed",
                "error": ResponseError(code=code or "server_error", message=message),
                "output": [*document.output, refusal],
            }
        )
        self._state = "failed"
        self._publish(failed)
        self._persist_now(failed)

    # --- Persistence ---

    def _schedule_persist(self) -> None:
        if self._store is None or self._persist_handle is not None:
            return
        loop = asyncio.get_running_loop()
        self._persist_handle = loop.call_later(self._persist_interval, self._flush)

    def _flush(self) -> None:
        self._persist_handle = None
        if self._document is not None:
            self._save(self._document)

    def _persist_now(self, document: Document) -> None:
        if self._persist_handle is not None:
            self._persist_handle.cancel()
            self._persist_handle = None
        self._save(document)

    def _save(self, document: Document) -> None:
        if self._store is None:
            return
        task = asyncio.create_task(self._store.save(self._conversation_id, document))
        self._pending_saves.add(task)
        task.add_done_callback(self._on_saved)

    def _on_saved(self, task: "asyncio.Task[None]") -> None:
        self._pending_saves.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning(
                "Failed to persist conversation %s: %s", self._conversation_id, exc
            )
