from __future__ import annotations

from threading import RLock
from typing import Dict, List, Optional, Protocol
import logging

from ..config import EngineSettings
from ..domain.conversation_models import now_iso
from ..domain.destination_models import DestinationState
from ..domain.prompt_models import LibraryRecord, PromptRecord

logger = logging.getLogger("prompt_engine.store")


class PromptStore(Protocol):
    async def get_prompt(self, prompt_id: str) -> Optional[PromptRecord]: ...

    async def save_prompt(self, record: PromptRecord) -> PromptRecord: ...

    async def upsert_conversation(self, prompt_id: str, blob: str, updated_at: str) -> None: ...

    async def increment_run_count(self, prompt_id: str) -> int: ...

    async def insert_library_record(self, record: LibraryRecord) -> str: ...

    async def list_library_records(self, project_id: Optional[str] = None) -> List[LibraryRecord]: ...

    async def set_destination(self, prompt_id: str, state: DestinationState) -> None: ...

    async def clear_destination(self, prompt_id: str) -> None: ...


class InMemoryPromptStore:
    """Process-local store used for development, tests and as the Mongo fallback."""

    def __init__(self) -> None:
        self._prompts: Dict[str, PromptRecord] = {}
        self._library: List[LibraryRecord] = []
        self._lock = RLock()

    async def get_prompt(self, prompt_id: str) -> Optional[PromptRecord]:
        with self._lock:
            record = self._prompts.get(prompt_id)
            return record.model_copy(deep=True) if record else None

    async def save_prompt(self, record: PromptRecord) -> PromptRecord:
        with self._lock:
            stored = record.model_copy(deep=True)
            self._prompts[record.prompt_id] = stored
            return stored.model_copy(deep=True)

    async def upsert_conversation(self, prompt_id: str, blob: str, updated_at: str) -> None:
        with self._lock:
            existing = self._prompts.get(prompt_id)
            if existing is None:
                # Upsert: a row written only through the conversation path has no content yet.
                existing = PromptRecord(prompt_id=prompt_id, content="")
                self._prompts[prompt_id] = existing
            existing.conversation_blob = blob
            existing.updated_at = updated_at

    async def increment_run_count(self, prompt_id: str) -> int:
        with self._lock:
            existing = self._prompts.get(prompt_id)
            if existing is None:
                raise KeyError("Prompt not found")
            existing.run_count += 1
            existing.updated_at = now_iso()
            return existing.run_count

    async def insert_library_record(self, record: LibraryRecord) -> str:
        with self._lock:
            self._library.append(record.model_copy(deep=True))
            return f"lib-{len(self._library)}"

    async def list_library_records(self, project_id: Optional[str] = None) -> List[LibraryRecord]:
        with self._lock:
            return [
                r.model_copy(deep=True)
                for r in self._library
                if project_id is None or r.project_id == project_id
            ]

    async def set_destination(self, prompt_id: str, state: DestinationState) -> None:
        with self._lock:
            existing = self._prompts.get(prompt_id)
            if existing is None:
                raise KeyError("Prompt not found")
            existing.destination = state.model_copy(deep=True)
            existing.updated_at = now_iso()

    async def clear_destination(self, prompt_id: str) -> None:
        with self._lock:
            existing = self._prompts.get(prompt_id)
            if existing is None:
                return
            existing.destination = None
            existing.updated_at = now_iso()


_store: PromptStore | None = None


def get_prompt_store() -> PromptStore:
    global _store
    if _store is not None:
        return _store
    settings = EngineSettings.from_env()
    if settings.store_impl == "mongo":
        from .prompt_store_mongo import MongoPromptStore

        _store = MongoPromptStore(settings.mongo_url, settings.mongo_db)
    else:
        _store = InMemoryPromptStore()
    logger.info("Prompt store: %s", type(_store).__name__)
    return _store
