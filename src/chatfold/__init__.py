from .collaborators import (
    DocumentObserver,
    DocumentStore,
    InMemoryDocumentStore,
    ToolExecutor,
)
from .errors import (
    ChatfoldError,
    ConfigError,
    EmptyStreamError,
    ProviderError,
    TransportError,
    UnsupportedToolError,
)
from .producer import ResponseProducer
from .reducer import fold, fold_all, seal_open_items
from .tool_orchestrator import ToolOrchestrator
from .turn_controller import TurnController, TurnState
from .typing.document import Document
from .typing.events import ResponseEvent, parse_event
from .typing.history import HistoryEntry, InputMessage

__all__ = [
    "ChatfoldError",
    "ConfigError",
    "Document",
    "DocumentObserver",
    "DocumentStore",
    "EmptyStreamError",
    "HistoryEntry",
    "InMemoryDocumentStore",
    "InputMessage",
    "ProviderError",
    "ResponseEvent",
    "ResponseProducer",
    "ToolExecutor",
    "ToolOrchestrator",
    "TransportError",
    "TurnController",
    "TurnState",
    "UnsupportedToolError",
    "fold",
    "fold_all",
    "parse_event",
    "seal_open_items",
]
