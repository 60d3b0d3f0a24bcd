from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, Optional

from ..config import EngineSettings
from ..domain.conversation_models import now_iso
from ..domain.destination_models import (
    ChatSubProvider,
    DestinationContext,
    DestinationKind,
    DestinationState,
    TailoringResponse,
)
from ..domain.results import OperationResult
from ..errors import ErrorKind, RetrievalTimeout, SessionBusy
from ..infrastructure.events import publish_event
from ..infrastructure.prompt_store import PromptStore
from ..services.tailoring import TailoringService
from .conversation_engine import ConversationEngine

if TYPE_CHECKING:
    from .session import PromptSession

logger = logging.getLogger(__name__)


def default_user_intent(tool: str) -> str:
    return f"Generate insights for {tool}"


def _parse_timestamp(value: str) -> Optional[datetime]:
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (AttributeError, ValueError):
        return None
    # Naive stamps are taken as UTC.
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def is_fresh(found: DestinationState, destination: DestinationKind, started_at: str) -> bool:
    """True when ``found`` was written for ``destination`` no earlier than ``started_at``."""
    if not found.tailored_prompt or found.destination != destination:
        return False
    written = _parse_timestamp(found.tailored_at)
    started = _parse_timestamp(started_at)
    return written is not None and started is not None and written >= started


class DestinationPipeline:
    """Tailors a prompt for an output destination and runs the tailored turn."""

    def __init__(
        self,
        tailoring: TailoringService,
        store: PromptStore,
        engine: ConversationEngine,
        settings: Optional[EngineSettings] = None,
    ) -> None:
        self._tailoring = tailoring
        self._store = store
        self._engine = engine
        self._settings = settings or EngineSettings.from_env()

    def build_context(
        self,
        session: "PromptSession",
        destination: DestinationKind,
        sub_provider: Optional[ChatSubProvider] = None,
        user_intent: str = "",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> DestinationContext:
        state = session.state
        meta: Dict[str, Any] = {
            "framework": state.context.framework,
            "stage": state.context.stage,
            "tool": state.context.tool,
            "industry": state.industry,
        }
        meta.update(metadata or {})
        return DestinationContext(
            destination=destination,
            sub_provider=sub_provider if destination == DestinationKind.CHAT_PROVIDER else None,
            user_intent=user_intent,
            original_prompt=state.active_content,
            variables=dict(state.variables),
            metadata=meta,
        )

    async def select_destination(self, session: "PromptSession", context: DestinationContext) -> OperationResult:
        """Tailor for ``context`` and run the tailored turn.

        The generation slot is held from the tailoring call through the
        tailored turn, so no other turn can interleave with a selection.
        """

        try:
            with session.generation_slot():
                return await self._select_in_slot(session, context)
        except (SessionBusy, RetrievalTimeout) as exc:
            return OperationResult.failure(exc.kind, str(exc), session.conversation_copy())

    async def _select_in_slot(self, session: "PromptSession", context: DestinationContext) -> OperationResult:
        state = session.state
        updates: Dict[str, Any] = {}
        if not context.user_intent.strip():
            updates["user_intent"] = default_user_intent(state.context.tool)
        if not context.original_prompt:
            updates["original_prompt"] = state.active_content
        if updates:
            context = context.model_copy(update=updates)

        started_at = now_iso()
        response = await self._tailor(context, state.prompt_id)
        if not response.success:
            message = ", ".join(response.errors) or "Unknown error occurred"
            logger.warning("Tailoring for %s failed: %s", state.prompt_id, message)
            return OperationResult.failure(ErrorKind.TAILORING_FAILURE, message, session.conversation_copy())

        if response.tailored_prompt:
            destination_state = DestinationState(
                destination=context.destination,
                sub_provider=context.sub_provider,
                user_intent=context.user_intent,
                tailored_prompt=response.tailored_prompt,
                clarifying_questions=list(response.clarifying_questions),
            )
        else:
            destination_state = await self._poll_for_tailored_prompt(state.prompt_id, context.destination, started_at)

        if session.closed:
            logger.info("Prompt %s was closed during tailoring; skipping tailored turn", state.prompt_id)
            return OperationResult.failure(ErrorKind.PROMPT_NOT_FOUND, "Prompt view was closed during tailoring")
        state.destination = destination_state
        return await self._engine.run_tailored_turn(session, destination_state.tailored_prompt or "", context)

    async def clear_destination(self, session: "PromptSession") -> OperationResult:
        state = session.state
        state.destination = None
        try:
            await self._store.clear_destination(state.prompt_id)
        except KeyError:
            logger.debug("No stored row to clear destination on for %s", state.prompt_id)
        except Exception as exc:
            logger.error("Clearing destination for %s failed: %s", state.prompt_id, exc)
            return OperationResult.failure(ErrorKind.PERSISTENCE_FAILURE, str(exc), session.conversation_copy())
        publish_event("destination.cleared", {"prompt_id": state.prompt_id})
        return OperationResult.ok(session.conversation_copy())

    async def _tailor(self, context: DestinationContext, prompt_id: str) -> TailoringResponse:
        try:
            return await self._tailoring.tailor(context, prompt_id)
        except Exception as exc:
            logger.warning("Tailoring service raised for %s: %s", prompt_id, exc)
            return TailoringResponse(success=False, errors=[str(exc) or exc.__class__.__name__])

    async def _poll_for_tailored_prompt(
        self,
        prompt_id: str,
        destination: DestinationKind,
        started_at: str,
    ) -> DestinationState:
        """Wait for the tailoring side channel to write the result onto the prompt row.

        Only a state written for this destination since ``started_at`` counts,
        so a result left over from an earlier run is never picked up.
        """

        attempts = self._settings.tailor_poll_attempts
        for attempt in range(1, attempts + 1):
            await asyncio.sleep(self._settings.tailor_poll_interval_s)
            try:
                record = await self._store.get_prompt(prompt_id)
            except Exception as exc:
                logger.warning("Polling %s for tailored prompt failed: %s", prompt_id, exc)
                continue
            found = record.destination if record is not None else None
            if found is not None and is_fresh(found, destination, started_at):
                logger.debug("Tailored prompt for %s found on attempt %d", prompt_id, attempt)
                return found
        logger.warning("Tailored prompt for %s not found after %d attempts", prompt_id, attempts)
        raise RetrievalTimeout("Tailoring finished but the tailored prompt could not be retrieved; try again")
