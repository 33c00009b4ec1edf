import asyncio
from typing import Protocol

from .typing.document import Document


class DocumentStore(Protocol):
    async def save(self, conversation_id: str, document: Document) -> None: ...


class DocumentObserver(Protocol):
    def __call__(self, document: Document) -> None: ...


class ToolExecutor(Protocol):
    async def __call__(self, name: str, arguments: str) -> str: ...


class InMemoryDocumentStore:
    """Keeps every saved snapshot per conversation, latest last."""

    def __init__(self) -> None:
        self._snapshots: dict[str, list[Document]] = {}
        self._lock = asyncio.Lock()

    async def save(self, conversation_id: str, document: Document) -> None:
        async with self._lock:
            self._snapshots.setdefault(conversation_id, []).append(document)

    def snapshots(self, conversation_id: str) -> list[Document]:
        return list(self._snapshots.get(conversation_id, []))

    def latest(self, conversation_id: str) -> Document | None:
        snapshots = self._snapshots.get(conversation_id)
        return snapshots[-1] if snapshots else None
