from __future__ import annotations

import logging
import os
from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection
from pymongo import ReturnDocument

from ..domain.conversation_models import now_iso
from ..domain.destination_models import DestinationState
from ..domain.prompt_models import LibraryRecord, PromptRecord
from .prompt_store import InMemoryPromptStore

logger = logging.getLogger("prompt_engine.store")


class MongoPromptStore:
    """Motor-backed prompt store.

    Connectivity is checked on first use. If Mongo is unreachable the store
    stays in fallback mode and serves an in-memory store instead, unless
    PROMPT_ENGINE_REQUIRE_MONGO is set. Errors after a successful connection
    propagate to the caller.
    """

    def __init__(
        self,
        mongo_url: Optional[str] = None,
        mongo_db: Optional[str] = None,
        client: Optional[AsyncIOMotorClient] = None,
    ) -> None:
        self._fallback = InMemoryPromptStore()
        self._mongo_url = mongo_url or os.getenv("MONGO_URL", "mongodb://localhost:27017")
        self._mongo_db = mongo_db or os.getenv("MONGO_DB", "prompt_engine")
        self._client: AsyncIOMotorClient | None = client
        self._prompts: AsyncIOMotorCollection | None = None
        self._library: AsyncIOMotorCollection | None = None
        self._checked = False

    async def _connect(self) -> None:
        if self._checked:
            return
        self._checked = True
        try:
            if self._client is None:
                self._client = AsyncIOMotorClient(self._mongo_url, serverSelectionTimeoutMS=500)
            await self._client.server_info()
            db = self._client[self._mongo_db]
            self._prompts = db["prompts"]
            self._library = db["prompt_library"]
            await self._prompts.create_index("prompt_id", unique=True)
            await self._library.create_index("project_id")
        except Exception as exc:
            if os.getenv("PROMPT_ENGINE_REQUIRE_MONGO", "false").lower() in ("1", "true", "yes"):
                raise RuntimeError("Mongo prompt store required but not available") from exc
            logger.warning("Mongo unavailable (%s); prompt store running in memory", exc)
            self._client = None
            self._prompts = None
            self._library = None

    async def _use_fallback(self) -> bool:
        await self._connect()
        return self._prompts is None or self._library is None

    async def get_prompt(self, prompt_id: str) -> Optional[PromptRecord]:
        if await self._use_fallback():
            return await self._fallback.get_prompt(prompt_id)
        doc = await self._prompts.find_one({"prompt_id": prompt_id})  # type: ignore[union-attr]
        if not doc:
            return None
        return self._to_record(doc)

    async def save_prompt(self, record: PromptRecord) -> PromptRecord:
        if await self._use_fallback():
            return await self._fallback.save_prompt(record)
        doc = record.model_dump(mode="json")
        await self._prompts.replace_one({"prompt_id": record.prompt_id}, doc, upsert=True)  # type: ignore[union-attr]
        return record

    async def upsert_conversation(self, prompt_id: str, blob: str, updated_at: str) -> None:
        if await self._use_fallback():
            await self._fallback.upsert_conversation(prompt_id, blob, updated_at)
            return
        await self._prompts.update_one(  # type: ignore[union-attr]
            {"prompt_id": prompt_id},
            {
                "$set": {"conversation_blob": blob, "updated_at": updated_at},
                "$setOnInsert": {"content": "", "created_at": updated_at},
            },
            upsert=True,
        )

    async def increment_run_count(self, prompt_id: str) -> int:
        if await self._use_fallback():
            return await self._fallback.increment_run_count(prompt_id)
        updated = await self._prompts.find_one_and_update(  # type: ignore[union-attr]
            {"prompt_id": prompt_id},
            {"$inc": {"run_count": 1}, "$set": {"updated_at": now_iso()}},
            return_document=ReturnDocument.AFTER,
        )
        if not updated:
            raise KeyError("Prompt not found")
        return int(updated.get("run_count", 0))

    async def insert_library_record(self, record: LibraryRecord) -> str:
        if await self._use_fallback():
            return await self._fallback.insert_library_record(record)
        result = await self._library.insert_one(record.model_dump(mode="json"))  # type: ignore[union-attr]
        return str(result.inserted_id)

    async def list_library_records(self, project_id: Optional[str] = None) -> List[LibraryRecord]:
        if await self._use_fallback():
            return await self._fallback.list_library_records(project_id)
        query: Dict[str, Any] = {"project_id": project_id} if project_id is not None else {}
        cursor = self._library.find(query).sort("created_at", 1)  # type: ignore[union-attr]
        docs = await cursor.to_list(length=500)
        return [LibraryRecord.model_validate(self._strip_id(doc)) for doc in docs]

    async def set_destination(self, prompt_id: str, state: DestinationState) -> None:
        if await self._use_fallback():
            await self._fallback.set_destination(prompt_id, state)
            return
        result = await self._prompts.update_one(  # type: ignore[union-attr]
            {"prompt_id": prompt_id},
            {"$set": {"destination": state.model_dump(mode="json"), "updated_at": now_iso()}},
        )
        if not result.matched_count:
            raise KeyError("Prompt not found")

    async def clear_destination(self, prompt_id: str) -> None:
        if await self._use_fallback():
            await self._fallback.clear_destination(prompt_id)
            return
        await self._prompts.update_one(  # type: ignore[union-attr]
            {"prompt_id": prompt_id},
            {"$set": {"destination": None, "updated_at": now_iso()}},
        )

    @staticmethod
    def _strip_id(doc: Dict[str, Any]) -> Dict[str, Any]:
        data = dict(doc)
        data.pop("_id", None)
        return data

    def _to_record(self, doc: Dict[str, Any]) -> PromptRecord:
        return PromptRecord.model_validate(self._strip_id(doc))
