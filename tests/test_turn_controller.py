import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

import asyncio
import unittest

from chatfold.collaborators import InMemoryDocumentStore
from chatfold.errors import EmptyStreamError, ProviderError, TransportError
from chatfold.turn_controller import TurnController
from chatfold.typing.document import (
    Document,
    FunctionCall,
    FunctionCallOutput,
    Message,
    Refusal,
    ResponseError,
)
from chatfold.typing.events import (
    FunctionCallArgumentsDeltaEvent,
    OutputItemAddedEvent,
    OutputItemDoneEvent,
    ResponseCompletedEvent,
    ResponseCreatedEvent,
    ResponseFailedEvent,
)
from chatfold.typing.history import InputMessage

from fakes import BLOCK, ScriptedProducer, message_turn


def _tool_call_turn(call_id: str = "call_1") -> list:
    call = FunctionCall(
        id="fc_1", name="add", call_id=call_id, arguments="", status="in_progress"
    )
    done = call.model_copy(update={"arguments": '{"a": 2, "b": 2}', "status": "completed"})
    return [
        ResponseCreatedEvent(response=Document(id="resp_tool", model="gpt-test")),
        OutputItemAddedEvent(output_index=0, item=call),
        FunctionCallArgumentsDeltaEvent(output_index=0, delta='{"a": 2, "b": 2}'),
        OutputItemDoneEvent(output_index=0, item=done),
        ResponseCompletedEvent(
            response=Document(
                id="resp_tool", model="gpt-test", status="completed", output=[done]
            )
        ),
    ]


class _FailingStore:
    async def save(self, conversation_id: str, document: Document) -> None:
        raise OSError("disk full")


class _HangingStore:
    def __init__(self) -> None:
        self.calls = 0

    async def save(self, conversation_id: str, document: Document) -> None:
        self.calls += 1
        await asyncio.Event().wait()


class TestTurnOutcomes(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.history = [InputMessage.from_text("Say hello")]

    async def test_completed_turn(self):
        store = InMemoryDocumentStore()
        seen: list[Document] = []
        controller = TurnController(
            ScriptedProducer(message_turn(["Hello", ", world"])),
            store=store,
            observers=[seen.append],
        )
        self.assertEqual(controller.state, "idle")

        document = await controller.run(self.history)
        await controller.wait_persisted()

        self.assertEqual(controller.state, "completed")
        self.assertIs(controller.document, document)
        self.assertEqual(document.status, "completed")
        self.assertEqual(document.output_text, "Hello, world")
        self.assertIs(seen[-1], document)
        self.assertEqual(seen[-2].output_text, "Hello, world")
        self.assertEqual(seen[-2].status, "in_progress")
        self.assertIs(store.latest(controller.conversation_id), document)

    async def test_missing_item_ids_are_assigned(self):
        events = message_turn(["x"], complete=False)
        events[1] = OutputItemAddedEvent(
            output_index=0, item=Message(content=[], status="in_progress")
        )
        controller = TurnController(ScriptedProducer(events))
        document = await controller.run(self.history)
        self.assertTrue(document.output[0].id.startswith("item_"))

    async def test_transport_error_appends_refusal(self):
        events = message_turn(["partial"], complete=False)
        controller = TurnController(
            ScriptedProducer([*events, TransportError("connection reset")])
        )
        document = await controller.run(self.history)

        self.assertEqual(controller.state, "failed")
        self.assertEqual(document.status, "failed")
        self.assertEqual(document.error.code, "server_error")
        self.assertEqual(document.output[0].content[0].text, "partial")
        refusal_message = document.output[-1]
        self.assertIsInstance(refusal_message, Message)
        self.assertEqual(refusal_message.role, "assistant")
        self.assertIsInstance(refusal_message.content[0], Refusal)
        self.assertEqual(refusal_message.content[0].refusal, "connection reset")

    async def test_provider_error_keeps_code(self):
        controller = TurnController(
            ScriptedProducer([ProviderError("slow down", code="rate_limit_exceeded")])
        )
        document = await controller.run(self.history)
        self.assertEqual(document.error.code, "rate_limit_exceeded")
        self.assertEqual(document.output[-1].content[0].refusal, "slow down")

    async def test_empty_stream_creates_failed_document(self):
        controller = TurnController(
            ScriptedProducer([EmptyStreamError()], default_params={"model": "gpt-test"})
        )
        document = await controller.run(self.history)
        self.assertEqual(controller.state, "failed")
        self.assertEqual(document.model, "gpt-test")
        self.assertEqual(len(document.output), 1)
        self.assertEqual(document.output[0].content[0].refusal, "no response received")

    async def test_failed_snapshot(self):
        snapshot = Document(
            id="resp_1",
            status="failed",
            error=ResponseError(code="server_error", message="model overloaded"),
        )
        controller = TurnController(
            ScriptedProducer(
                [*message_turn([], complete=False), ResponseFailedEvent(response=snapshot)]
            )
        )
        document = await controller.run(self.history)
        self.assertEqual(controller.state, "failed")
        self.assertEqual(document.output[-1].content[0].refusal, "model overloaded")

    async def test_unexpected_producer_error_fails_the_turn(self):
        store = InMemoryDocumentStore()
        events = message_turn(["partial"], complete=False)
        controller = TurnController(
            ScriptedProducer([*events, RuntimeError("boom")]), store=store
        )
        with self.assertLogs("chatfold.turn_controller", level="WARNING"):
            document = await controller.run(self.history)
            await controller.wait_persisted()

        self.assertEqual(controller.state, "failed")
        self.assertFalse(controller.active)
        self.assertEqual(document.status, "failed")
        self.assertEqual(document.output[0].content[0].text, "partial")
        self.assertEqual(document.output[-1].content[0].refusal, "boom")
        self.assertIs(store.latest(controller.conversation_id), document)

    async def test_failing_observer_does_not_abort_the_turn(self):
        seen: list[Document] = []

        def render(document: Document) -> None:
            raise ValueError("render blew up")

        controller = TurnController(
            ScriptedProducer(message_turn(["Hello"])), observers=[render, seen.append]
        )
        with self.assertLogs("chatfold.turn_controller", level="ERROR"):
            document = await controller.run(self.history)

        self.assertEqual(controller.state, "completed")
        self.assertEqual(document.output_text, "Hello")
        self.assertIs(seen[-1], document)

    async def test_eof_without_terminal_event_is_incomplete(self):
        controller = TurnController(ScriptedProducer(message_turn(["cd"], complete=False)))
        document = await controller.run(self.history)
        self.assertEqual(controller.state, "incomplete")
        self.assertEqual(document.status, "in_progress")
        self.assertEqual(document.output[0].status, "in_progress")


class TestCancellation(unittest.IsolatedAsyncioTestCase):
    async def _start_and_cancel(self, **kwargs):
        producer = ScriptedProducer([*message_turn(["Hel", "lo"], complete=False), BLOCK])
        streamed = asyncio.Event()

        def observe(document: Document) -> None:
            if document.output_text == "Hello":
                streamed.set()

        controller = TurnController(producer, observers=[observe], **kwargs)
        task = controller.start([InputMessage.from_text("hi")])
        await streamed.wait()
        self.assertTrue(controller.cancel())
        document = await task
        return controller, producer, document

    async def test_cancel_leaves_document_as_folded(self):
        controller, producer, document = await self._start_and_cancel()
        self.assertEqual(controller.state, "incomplete")
        self.assertEqual(document.status, "in_progress")
        self.assertEqual(document.output[0].status, "in_progress")
        self.assertEqual(document.output_text, "Hello")
        self.assertEqual(producer.closed, 1)
        self.assertFalse(controller.cancel())

    async def test_seal_on_cancel(self):
        controller, _, document = await self._start_and_cancel(seal_on_cancel=True)
        self.assertEqual(document.status, "incomplete")
        self.assertEqual(document.output[0].status, "incomplete")
        self.assertEqual(document.output_text, "Hello")

    async def test_new_turn_cancels_active_turn(self):
        producer = ScriptedProducer(
            [*message_turn(["first"], complete=False), BLOCK],
            message_turn(["second"], response_id="resp_2"),
        )
        streamed = asyncio.Event()
        controller = TurnController(
            producer, observers=[lambda d: d.output_text and streamed.set()]
        )

        first = controller.start([InputMessage.from_text("one")])
        await streamed.wait()
        second = controller.start([InputMessage.from_text("two")])

        self.assertEqual((await second).output_text, "second")
        self.assertEqual((await first).output_text, "first")
        self.assertTrue(first.done())
        self.assertEqual(controller.state, "completed")
        self.assertEqual(len(producer.calls), 2)


    async def test_turn_replaced_while_waiting_resolves_to_none(self):
        producer = ScriptedProducer(
            [*message_turn(["first"], complete=False), BLOCK],
            message_turn(["third"], response_id="resp_3"),
        )
        streamed = asyncio.Event()
        controller = TurnController(
            producer, observers=[lambda d: d.output_text and streamed.set()]
        )

        first = controller.start([InputMessage.from_text("one")])
        await streamed.wait()
        second = controller.start([InputMessage.from_text("two")])
        third = controller.start([InputMessage.from_text("three")])

        self.assertIsNone(await second)
        self.assertEqual((await third).output_text, "third")
        self.assertEqual((await first).output_text, "first")
        self.assertEqual(controller.state, "completed")
        self.assertEqual(
            [[entry.text for entry in call] for call in producer.calls],
            [["one"], ["three"]],
        )


class TestRetry(unittest.IsolatedAsyncioTestCase):
    async def test_retry_resubmits_prefix_without_mutating_history(self):
        user = InputMessage.from_text("Tell me a joke")
        assistant = Document(id="resp_old", status="completed")
        history = [user, assistant]

        producer = ScriptedProducer(message_turn(["Knock knock"], response_id="resp_new"))
        controller = TurnController(producer)
        document = await controller.retry_from(history, assistant.id)

        self.assertEqual(producer.calls, [[user]])
        self.assertEqual(history, [user, assistant])
        self.assertEqual(document.id, "resp_new")


class TestToolLoop(unittest.IsolatedAsyncioTestCase):
    async def test_tool_results_are_folded_and_resubmitted(self):
        calls: list[tuple[str, str]] = []

        async def executor(name: str, arguments: str) -> str:
            calls.append((name, arguments))
            return "4"

        producer = ScriptedProducer(_tool_call_turn(), message_turn(["2 + 2 = 4"]))
        seen: list[Document] = []
        controller = TurnController(
            producer, tool_executor=executor, observers=[seen.append]
        )
        history = [InputMessage.from_text("What is 2 + 2?")]

        documents = await controller.run_with_tools(history)

        self.assertEqual(calls, [("add", '{"a": 2, "b": 2}')])
        self.assertEqual(len(documents), 2)
        output = documents[0].output[1]
        self.assertIsInstance(output, FunctionCallOutput)
        self.assertEqual(output.call_id, "call_1")
        self.assertEqual(output.status, "completed")
        self.assertEqual(output.output, "4")
        self.assertTrue(
            any(
                isinstance(d.output[-1], FunctionCallOutput)
                and d.output[-1].status == "in_progress"
                for d in seen
            )
        )
        self.assertIs(producer.calls[1][-1], documents[0])
        self.assertEqual(len(history), 1)
        self.assertEqual(documents[1].output_text, "2 + 2 = 4")

    async def test_executor_failure_seals_incomplete(self):
        async def executor(name: str, arguments: str) -> str:
            raise ValueError("division by zero")

        producer = ScriptedProducer(_tool_call_turn(), message_turn(["sorry"]))
        controller = TurnController(producer, tool_executor=executor)
        with self.assertLogs("chatfold.tool_orchestrator", level="WARNING"):
            documents = await controller.run_with_tools([InputMessage.from_text("1/0")])

        output = documents[0].output[1]
        self.assertEqual(output.status, "incomplete")
        self.assertEqual(output.output, "division by zero")

    async def test_rounds_are_bounded(self):
        async def executor(name: str, arguments: str) -> str:
            return "again"

        producer = ScriptedProducer(
            _tool_call_turn("call_1"), _tool_call_turn("call_2")
        )
        controller = TurnController(producer, tool_executor=executor, max_tool_rounds=1)
        documents = await controller.run_with_tools([InputMessage.from_text("loop")])

        self.assertEqual(len(producer.calls), 2)
        self.assertEqual(len(documents), 2)
        self.assertEqual(len(documents[1].output), 1)

    async def test_requires_executor(self):
        controller = TurnController(ScriptedProducer())
        with self.assertRaises(ValueError):
            await controller.run_with_tools([])


class TestCollaborators(unittest.IsolatedAsyncioTestCase):
    async def test_unsubscribe(self):
        seen: list[Document] = []
        controller = TurnController(ScriptedProducer(message_turn(["a"]), message_turn(["b"])))
        unsubscribe = controller.subscribe(seen.append)
        await controller.run([])
        count = len(seen)
        unsubscribe()
        await controller.run([])
        self.assertEqual(len(seen), count)

    async def test_in_progress_snapshots_are_saved(self):
        store = InMemoryDocumentStore()
        producer = ScriptedProducer([*message_turn(["Hel", "lo"], complete=False), BLOCK])
        controller = TurnController(producer, store=store, persist_interval=0.01)
        task = controller.start([InputMessage.from_text("hi")])

        snapshot = None
        for _ in range(200):
            snapshot = store.latest(controller.conversation_id)
            if snapshot is not None and snapshot.output_text == "Hello":
                break
            await asyncio.sleep(0.01)

        self.assertIsNotNone(snapshot)
        self.assertEqual(snapshot.output_text, "Hello")
        self.assertEqual(snapshot.status, "in_progress")
        self.assertEqual(controller.state, "in_progress")
        self.assertFalse(task.done())

        controller.cancel()
        await task

    async def test_slow_store_does_not_block_the_turn(self):
        store = _HangingStore()
        controller = TurnController(
            ScriptedProducer(message_turn(["a", "b"])), store=store, persist_interval=0
        )
        document = await asyncio.wait_for(controller.run([]), timeout=5)

        self.assertEqual(controller.state, "completed")
        self.assertEqual(document.output_text, "ab")
        self.assertGreaterEqual(store.calls, 1)

    async def test_persistence_failures_are_logged(self):
        controller = TurnController(
            ScriptedProducer(message_turn(["a"])), store=_FailingStore()
        )
        with self.assertLogs("chatfold.turn_controller", level="WARNING") as logs:
            document = await controller.run([])
            await controller.wait_persisted()
        self.assertEqual(document.status, "completed")
        self.assertTrue(any("disk full" in line for line in logs.output))


if __name__ == "__main__":
    unittest.main()
