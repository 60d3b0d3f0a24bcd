from __future__ import annotations

import logging
from typing import TYPE_CHECKING, List, Optional

from ..domain.conversation_models import new_message_id, now_iso
from ..domain.prompt_models import (
    ORIGINAL_VERSION_ID,
    ORIGINAL_VERSION_TITLE,
    LibraryRecord,
    PromptState,
    SavedPromptVersion,
)
from ..domain.results import OperationResult
from ..errors import ErrorKind, VersionNotFound
from ..infrastructure.events import publish_event
from ..infrastructure.prompt_store import PromptStore
from .persistence import DebouncedPersistenceAdapter

if TYPE_CHECKING:
    from .session import PromptSession

logger = logging.getLogger(__name__)


def original_version(state: PromptState, timestamp: Optional[str] = None) -> SavedPromptVersion:
    """The version synthesized at load time; it starts out active."""
    return SavedPromptVersion(
        id=ORIGINAL_VERSION_ID,
        title=ORIGINAL_VERSION_TITLE,
        content=state.original_content,
        timestamp=timestamp or now_iso(),
        conversation=[m.model_copy() for m in state.conversation if not m.is_placeholder],
        active=True,
    )


def _activate(versions: List[SavedPromptVersion], version_id: str) -> SavedPromptVersion:
    target = next((v for v in versions if v.id == version_id), None)
    if target is None:
        raise VersionNotFound(f"Version not found: {version_id}")
    for version in versions:
        version.active = version.id == version_id
    return target


class VersionManager:
    def __init__(self, store: PromptStore, persistence: DebouncedPersistenceAdapter) -> None:
        self._store = store
        self._persistence = persistence

    def list_versions(self, session: "PromptSession") -> List[SavedPromptVersion]:
        return [v.model_copy(deep=True) for v in session.state.versions]

    async def create_version(self, session: "PromptSession") -> OperationResult:
        """Snapshot the active content and thread as a new active version.

        The library record is written straight away rather than through the
        debounced save, since the user explicitly asked to keep this state.
        """

        state = session.state
        title = f"Version {len(state.versions)}"
        version = SavedPromptVersion(
            id=new_message_id("version"),
            title=title,
            content=state.active_content,
            conversation=[m.model_copy() for m in state.conversation if not m.is_placeholder],
        )
        state.versions.append(version)
        _activate(state.versions, version.id)

        record = LibraryRecord(
            title=title,
            content=state.active_content,
            framework=state.context.framework,
            stage=state.context.stage,
            tool=state.context.tool,
            variable_names=list(state.variables.keys()),
            description=f"Saved version of {state.context.tool} prompt",
            project_id=state.project_id,
            original_prompt_id=state.prompt_id,
        )
        try:
            record_id = await self._store.insert_library_record(record)
        except Exception as exc:
            logger.error("Library record for %s (%s) was not saved: %s", state.prompt_id, title, exc)
            return OperationResult.failure(
                ErrorKind.PERSISTENCE_FAILURE,
                f"{title} was created but could not be saved to the library: {exc}",
                session.conversation_copy(),
                content=state.active_content,
            )

        publish_event(
            "version.created",
            {"prompt_id": state.prompt_id, "version_id": version.id, "title": title, "library_id": record_id},
        )
        logger.info("Created %s for prompt %s", title, state.prompt_id)
        return OperationResult.ok(session.conversation_copy(), content=state.active_content, message=version.id)

    def switch_to_version(self, session: "PromptSession", version_id: str) -> OperationResult:
        state = session.state
        if session.is_generating:
            return OperationResult.failure(
                ErrorKind.BUSY,
                f"A response is still being generated for prompt {state.prompt_id}",
                session.conversation_copy(),
            )
        try:
            target = _activate(state.versions, version_id)
        except VersionNotFound as exc:
            return OperationResult.failure(exc.kind, str(exc), session.conversation_copy())

        # Any in-progress draft edit is discarded along with the live thread.
        state.active_content = target.content
        state.draft_content = target.content
        state.conversation = [m.model_copy() for m in target.conversation]
        if not session.closed:
            self._persistence.schedule_save(state.prompt_id, state.conversation)
        return OperationResult.ok(session.conversation_copy(), content=target.content, message=target.id)
