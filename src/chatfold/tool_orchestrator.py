import asyncio
from collections.abc import Callable, Sequence
from logging import getLogger

from .collaborators import ToolExecutor
from .reducer import fold
from .typing.document import Document, FunctionCall, FunctionCallOutput, new_id
from .typing.events import (
    FunctionCallOutputCompletedEvent,
    FunctionCallOutputIncompleteEvent,
    OutputItemAddedEvent,
    ResponseEvent,
)

logger = getLogger(__name__)

DEFAULT_MAX_TOOL_ROUNDS = 5


def pending_calls(document: Document) -> list[FunctionCall]:
    """Function calls in ``document`` that have no output item yet."""
    answered = {
        item.call_id for item in document.output if isinstance(item, FunctionCallOutput)
    }
    return [
        item
        for item in document.output
        if isinstance(item, FunctionCall) and item.call_id not in answered
    ]


class ToolOrchestrator:
    """
    Runs the function calls of a finished response and folds their results.

    Every pending call gets a ``function_call_output`` item appended in
    ``in_progress`` state; once its executor returns the item is sealed with
    ``response.function_call_output.completed``, or with
    ``response.function_call_output.incomplete`` carrying the error message
    when the executor raises.
    """

    def __init__(
        self,
        executor: ToolExecutor,
        *,
        max_rounds: int = DEFAULT_MAX_TOOL_ROUNDS,
        clamp_indices: bool = True,
    ) -> None:
        self._executor = executor
        self._max_rounds = max_rounds
        self._clamp_indices = clamp_indices

    @property
    def executor(self) -> ToolExecutor:
        return self._executor

    @property
    def max_rounds(self) -> int:
        return self._max_rounds

    def _fold(self, document: Document, event: ResponseEvent) -> Document:
        folded = fold(document, event, clamp_indices=self._clamp_indices)
        assert folded is not None
        return folded

    async def _execute(self, call: FunctionCall) -> tuple[bool, str]:
        try:
            return True, await self._executor(call.name, call.arguments)
        except Exception as exc:
            logger.warning("Tool %s (call %s) failed: %s", call.name, call.call_id, exc)
            return False, str(exc)

    async def call_tools(
        self,
        document: Document,
        on_update: Callable[[Document], None] | None = None,
    ) -> Document:
        calls: Sequence[FunctionCall] = pending_calls(document)
        if not calls:
            return document

        def apply(event: ResponseEvent) -> None:
            nonlocal document
            document = self._fold(document, event)
            if on_update is not None:
                on_update(document)

        indices: list[int] = []
        outputs: list[FunctionCallOutput] = []
        for call in calls:
            output = FunctionCallOutput(
                id=new_id("item"), call_id=call.call_id, status="in_progress"
            )
            indices.append(len(document.output))
            outputs.append(output)
            apply(OutputItemAddedEvent(output_index=indices[-1], item=output))

        logger.info("Running %d tool call(s) for response %s", len(calls), document.id)
        results = await asyncio.gather(*(self._execute(call) for call in calls))

        for index, output, (ok, text) in zip(indices, outputs, results, strict=True):
            item = output.model_copy(update={"output": text})
            if ok:
                apply(FunctionCallOutputCompletedEvent(output_index=index, item=item))
            else:
                apply(FunctionCallOutputIncompleteEvent(output_index=index, item=item))

        return document
