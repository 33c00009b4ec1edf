from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Sequence
from uuid import uuid4

from .config import ResponseParams
from .typing.events import ResponseEvent
from .typing.history import HistoryEntry


class ResponseProducer(ABC):
    """
    A source of canonical response events for one turn.

    Implementations open exactly one upstream request per call to
    ``stream_events`` and yield events in upstream order. Transport failures
    are raised as ``TransportError``, upstream-reported errors as
    ``ProviderError`` and an upstream that yields nothing as
    ``EmptyStreamError``.
    """

    # Reported as gen_ai.provider.name on turn spans
    provider_name: str = "openai"

    @abstractmethod
    def __init__(
        self,
        producer_id: str | None = None,
        default_params: ResponseParams | None = None,
    ) -> None:
        super().__init__()

        self._producer_id = producer_id or str(uuid4())[:8]
        self._default_params: ResponseParams = default_params or ResponseParams()

    @property
    def producer_id(self) -> str:
        return self._producer_id

    @property
    def default_params(self) -> ResponseParams:
        return self._default_params

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(producer_id={self.producer_id}; "
            f"model={self._default_params.get('model')})"
        )

    def resolve_params(self, params: ResponseParams | None = None) -> ResponseParams:
        merged = ResponseParams(**self._default_params)
        merged.update(params or {})
        return merged

    @abstractmethod
    def stream_events(
        self,
        history: Sequence[HistoryEntry],
        params: ResponseParams | None = None,
    ) -> AsyncIterator[ResponseEvent]:
        pass
