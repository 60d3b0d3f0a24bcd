from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional

from ..config import EngineSettings
from ..domain.conversation_models import ConversationMessage
from ..domain.prompt_models import PromptRecord, PromptState
from ..errors import PromptNotFound, SessionBusy
from ..infrastructure.prompt_store import PromptStore, get_prompt_store
from ..services.conversation_codec import restore_conversation
from ..services.generation import GenerationService, get_generation_service
from ..services.tailoring import HttpTailoringService, LocalTailoringService, TailoringService
from .conversation_engine import ConversationEngine
from .destination_pipeline import DestinationPipeline
from .persistence import DebouncedPersistenceAdapter
from .version_manager import VersionManager, original_version

logger = logging.getLogger(__name__)


class PromptSession:
    """Mutable state for one open prompt view.

    All mutations happen on the event loop thread, so a plain flag is enough
    to keep a single generation in flight per prompt.
    """

    def __init__(self, state: PromptState, knowledge: Optional[List[Dict[str, str]]] = None) -> None:
        self.state = state
        self.knowledge: List[Dict[str, str]] = list(knowledge or [])
        self.closed = False
        self._generating = False

    @property
    def prompt_id(self) -> str:
        return self.state.prompt_id

    @property
    def is_generating(self) -> bool:
        return self._generating

    @contextmanager
    def generation_slot(self) -> Iterator[None]:
        if self._generating:
            raise SessionBusy(f"A response is already being generated for prompt {self.prompt_id}")
        self._generating = True
        try:
            yield
        finally:
            self._generating = False

    def sync_active_version(self) -> None:
        """Mirror the live thread into the active version snapshot."""
        active = self.state.active_version
        if active is None:
            return
        active.conversation = [m.model_copy() for m in self.state.conversation if not m.is_placeholder]

    def conversation_copy(self) -> List[ConversationMessage]:
        return [m.model_copy() for m in self.state.conversation]


def state_from_record(record: PromptRecord) -> PromptState:
    conversation = restore_conversation(record.conversation_blob, record.output, record.created_at)
    state = PromptState(
        prompt_id=record.prompt_id,
        project_id=record.project_id,
        original_content=record.content,
        active_content=record.content,
        draft_content=record.content,
        variables=dict(record.variables),
        conversation=conversation,
        destination=record.destination,
        context=record.context.model_copy(),
        industry=record.industry,
        structured_origin_id=record.structured_origin_id,
        run_count=record.run_count,
    )
    state.versions = [original_version(state, record.created_at)]
    return state


class SessionManager:
    """Owns the open prompt sessions and the components that act on them."""

    def __init__(
        self,
        store: PromptStore,
        generation: GenerationService,
        tailoring: Optional[TailoringService] = None,
        settings: Optional[EngineSettings] = None,
    ) -> None:
        self.settings = settings or EngineSettings.from_env()
        self.store = store
        self.persistence = DebouncedPersistenceAdapter(store, self.settings)
        self.engine = ConversationEngine(generation, self.persistence, store)
        self.versions = VersionManager(store, self.persistence)
        self.destinations = DestinationPipeline(
            tailoring or LocalTailoringService(store),
            store,
            self.engine,
            self.settings,
        )
        self._sessions: Dict[str, PromptSession] = {}

    def __contains__(self, prompt_id: str) -> bool:
        return prompt_id in self._sessions

    async def load_prompt(self, prompt_id: str, knowledge: Optional[List[Dict[str, str]]] = None) -> PromptSession:
        existing = self._sessions.get(prompt_id)
        if existing is not None:
            if knowledge is not None:
                existing.knowledge = list(knowledge)
            return existing
        record = await self.store.get_prompt(prompt_id)
        if record is None:
            raise PromptNotFound(f"Prompt not found: {prompt_id}")
        session = PromptSession(state_from_record(record), knowledge=knowledge)
        self._sessions[prompt_id] = session
        logger.info("Loaded prompt %s with %d messages", prompt_id, len(session.state.conversation))
        return session

    def get(self, prompt_id: str) -> PromptSession:
        session = self._sessions.get(prompt_id)
        if session is None:
            raise PromptNotFound(f"Prompt not loaded: {prompt_id}")
        return session

    async def close(self, prompt_id: str, flush: bool = False) -> bool:
        """Discard a session. In-flight generations keep running; their results are dropped."""
        session = self._sessions.pop(prompt_id, None)
        if session is None:
            return False
        session.closed = True
        if flush:
            await self.persistence.flush(prompt_id)
        else:
            self.persistence.cancel(prompt_id)
        logger.info("Closed prompt %s", prompt_id)
        return True

    async def shutdown(self) -> None:
        for prompt_id in list(self._sessions):
            await self.close(prompt_id)
        await self.persistence.close()


_manager: Optional[SessionManager] = None


def _tailoring_from_env(store: PromptStore) -> TailoringService:
    url = os.getenv("PROMPT_ENGINE_TAILORING_URL")
    if url:
        return HttpTailoringService(url, api_key=os.getenv("PROMPT_ENGINE_TAILORING_KEY"))
    return LocalTailoringService(store)


def get_session_manager() -> SessionManager:
    """Return the process-wide manager (store and services chosen from the environment)."""
    global _manager
    if _manager is not None:
        return _manager
    store = get_prompt_store()
    _manager = SessionManager(store, get_generation_service(), _tailoring_from_env(store))
    return _manager
