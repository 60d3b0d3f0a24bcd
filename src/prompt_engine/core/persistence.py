"""Debounced, best-effort conversation persistence.

Every mutation of a prompt's thread calls :meth:`schedule_save`. Calls that
arrive within the debounce window replace each other, so a burst of edits
becomes a single upsert carrying the state of the last call. Writes are
at-most-once per window: failures are logged and dropped, never retried.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional, Set

from ..config import EngineSettings
from ..domain.conversation_models import ConversationMessage, now_iso
from ..errors import ErrorKind
from ..infrastructure.events import publish_event
from ..infrastructure.prompt_store import PromptStore
from ..observability.metrics import PERSISTENCE_WRITES
from ..services.conversation_codec import encode_conversation

logger = logging.getLogger(__name__)


class DebouncedPersistenceAdapter:
    def __init__(self, store: PromptStore, settings: Optional[EngineSettings] = None) -> None:
        self._store = store
        self._settings = settings or EngineSettings.from_env()
        self._handles: Dict[str, asyncio.TimerHandle] = {}
        self._pending: Dict[str, List[ConversationMessage]] = {}
        self._writes: Set[asyncio.Task] = set()

    @property
    def delay_s(self) -> float:
        return self._settings.save_debounce_s

    def has_pending(self, prompt_id: str) -> bool:
        return prompt_id in self._handles

    def schedule_save(self, prompt_id: str, conversation: List[ConversationMessage]) -> bool:
        """Arm (or re-arm) the save timer for ``prompt_id``.

        Returns False when the call was skipped because there is nothing to
        persist.
        """

        if not conversation and prompt_id not in self._pending:
            logger.debug("Skipping save for %s: empty conversation, nothing pending", prompt_id)
            return False
        previous = self._handles.pop(prompt_id, None)
        if previous is not None:
            previous.cancel()
        self._pending[prompt_id] = [m.model_copy() for m in conversation]
        loop = asyncio.get_running_loop()
        self._handles[prompt_id] = loop.call_later(self.delay_s, self._fire, prompt_id)
        return True

    def cancel(self, prompt_id: str) -> bool:
        handle = self._handles.pop(prompt_id, None)
        self._pending.pop(prompt_id, None)
        if handle is None:
            return False
        handle.cancel()
        logger.debug("Cancelled pending save for %s", prompt_id)
        return True

    async def flush(self, prompt_id: str) -> bool:
        """Write the pending state for ``prompt_id`` immediately, if any."""
        handle = self._handles.pop(prompt_id, None)
        if handle is not None:
            handle.cancel()
        conversation = self._pending.pop(prompt_id, None)
        if conversation is None:
            return False
        return await self._write(prompt_id, conversation)

    async def close(self) -> None:
        for prompt_id in list(self._handles):
            self.cancel(prompt_id)
        await self.wait_idle()

    async def wait_idle(self) -> None:
        """Wait until writes already handed to the store have finished."""
        if self._writes:
            await asyncio.gather(*list(self._writes))

    def _fire(self, prompt_id: str) -> None:
        self._handles.pop(prompt_id, None)
        conversation = self._pending.pop(prompt_id, None)
        if conversation is None:
            return
        task = asyncio.ensure_future(self._write(prompt_id, conversation))
        self._writes.add(task)
        task.add_done_callback(self._writes.discard)

    async def _write(self, prompt_id: str, conversation: List[ConversationMessage]) -> bool:
        blob = encode_conversation(conversation)
        updated_at = now_iso()
        try:
            await self._store.upsert_conversation(prompt_id, blob, updated_at)
        except Exception as exc:
            # Best effort: the next mutation reschedules a save.
            logger.error("%s: conversation save for %s failed: %s", ErrorKind.PERSISTENCE_FAILURE.value, prompt_id, exc)
            PERSISTENCE_WRITES.labels(outcome="failure").inc()
            return False
        PERSISTENCE_WRITES.labels(outcome="success").inc()
        publish_event("conversation.saved", {"prompt_id": prompt_id, "updated_at": updated_at, "messages": len(conversation)})
        return True
