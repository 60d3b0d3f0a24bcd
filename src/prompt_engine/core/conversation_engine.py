"""Turn-taking for a prompt's conversation thread.

Every operation mutates the session state synchronously up to the
generation call, so the thread is never observed half-updated. While the
call is in flight the thread carries the typing placeholder; whatever the
outcome, the placeholder is swapped for exactly one assistant message.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from ..domain.conversation_models import ConversationMessage, HistoryTurn, history_for_generation, now_iso
from ..domain.destination_models import DESTINATION_LABELS, DestinationContext
from ..domain.generation_models import GenerationRequest, GenerationResponse
from ..domain.results import OperationResult
from ..errors import ErrorKind, GenerationFailure, RegenerationPreconditionError, SessionBusy
from ..infrastructure.prompt_store import PromptStore
from ..observability.metrics import GENERATION_REQUESTS
from ..services.generation import GenerationService
from .persistence import DebouncedPersistenceAdapter

if TYPE_CHECKING:
    from .session import PromptSession

logger = logging.getLogger(__name__)

ERROR_MESSAGE_TEMPLATE = (
    "I apologize, but I encountered an error while processing your request. "
    "Please try again or rephrase your question.\n\nError: {error}"
)
CONTEXT_CHANGE_MESSAGE = (
    "I've updated my context with your edited prompt. The new prompt context is now active "
    "for our conversation. Feel free to ask me questions or request modifications based on "
    "this updated context."
)


class ConversationEngine:
    def __init__(
        self,
        generation: GenerationService,
        persistence: DebouncedPersistenceAdapter,
        store: Optional[PromptStore] = None,
    ) -> None:
        self._generation = generation
        self._persistence = persistence
        self._store = store

    # ------------------------------------------------------------------
    # public operations
    # ------------------------------------------------------------------
    async def send_follow_up(self, session: "PromptSession", text: str) -> OperationResult:
        if not (text or "").strip():
            return OperationResult.failure(ErrorKind.INVALID_INPUT, "Message text is empty", session.conversation_copy())
        try:
            with session.generation_slot():
                state = session.state
                history = history_for_generation(state.conversation)
                state.conversation.append(ConversationMessage.user(text))
                return await self._generate_into_placeholder(
                    session,
                    operation="send",
                    user_message=text,
                    history=history,
                    reply_prefix="ai",
                )
        except SessionBusy as exc:
            return OperationResult.failure(exc.kind, str(exc), session.conversation_copy())

    async def regenerate(self, session: "PromptSession", message_id: str) -> OperationResult:
        try:
            with session.generation_slot():
                conversation = session.state.conversation
                index = self._regeneration_index(conversation, message_id)
                user_message = conversation[index - 1]
                history = history_for_generation(conversation[: index - 1])
                conversation[index] = ConversationMessage.placeholder()
                return await self._generate_into_placeholder(
                    session,
                    operation="regenerate",
                    user_message=user_message.content,
                    history=history,
                    reply_prefix="ai-regen",
                    placeholder_added=True,
                )
        except (SessionBusy, RegenerationPreconditionError) as exc:
            return OperationResult.failure(exc.kind, str(exc), session.conversation_copy())

    async def use_as_new_prompt(self, session: "PromptSession", text: str) -> OperationResult:
        """Promote an earlier reply into a fresh root prompt; the visible thread is kept."""
        if not (text or "").strip():
            return OperationResult.failure(ErrorKind.INVALID_INPUT, "Prompt text is empty", session.conversation_copy())
        try:
            with session.generation_slot():
                session.state.conversation.append(ConversationMessage.user(text))
                return await self._generate_into_placeholder(
                    session,
                    operation="use_as_new",
                    user_message=text,
                    history=[],
                    reply_prefix="ai",
                )
        except SessionBusy as exc:
            return OperationResult.failure(exc.kind, str(exc), session.conversation_copy())

    async def send_tailored_turn(
        self,
        session: "PromptSession",
        tailored_text: str,
        destination: DestinationContext,
    ) -> OperationResult:
        """Run a fresh turn seeded with destination-tailored text.

        Only the reply is shown; the tailored text itself is not added to the
        thread as a user message.
        """

        try:
            with session.generation_slot():
                return await self.run_tailored_turn(session, tailored_text, destination)
        except SessionBusy as exc:
            return OperationResult.failure(exc.kind, str(exc), session.conversation_copy())

    async def run_tailored_turn(
        self,
        session: "PromptSession",
        tailored_text: str,
        destination: DestinationContext,
    ) -> OperationResult:
        """Tailored turn for a caller that already holds the generation slot."""
        return await self._generate_into_placeholder(
            session,
            operation="tailored",
            user_message=tailored_text,
            history=[],
            reply_prefix="tailored-response",
            extra_context={
                "destination": DESTINATION_LABELS[destination.destination],
                "user_intent": destination.user_intent,
                "purpose": "tailored_response",
            },
        )

    def edit_active_content(self, session: "PromptSession", new_content: str) -> OperationResult:
        """Replace the active content. Destructive: the visible thread is discarded."""
        if not (new_content or "").strip():
            return OperationResult.failure(ErrorKind.INVALID_INPUT, "Prompt content is empty", session.conversation_copy())
        if session.is_generating:
            return OperationResult.failure(
                ErrorKind.BUSY,
                f"A response is still being generated for prompt {session.prompt_id}",
                session.conversation_copy(),
            )
        state = session.state
        state.active_content = new_content
        state.draft_content = new_content
        active = state.active_version
        if active is not None:
            active.content = new_content
            active.timestamp = now_iso()
        state.conversation = [ConversationMessage.assistant(CONTEXT_CHANGE_MESSAGE, prefix="context")]
        self.commit(session)
        return OperationResult.ok(session.conversation_copy(), content=new_content)

    def commit(self, session: "PromptSession") -> None:
        """Propagate a thread mutation to the active version and the save timer."""
        if session.closed:
            return
        session.sync_active_version()
        self._persistence.schedule_save(session.prompt_id, session.state.conversation)

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _regeneration_index(conversation: List[ConversationMessage], message_id: str) -> int:
        index = next((i for i, m in enumerate(conversation) if m.id == message_id), -1)
        if index < 0:
            raise RegenerationPreconditionError(f"Message {message_id} not found")
        if conversation[index].role != "assistant" or conversation[index].is_placeholder:
            raise RegenerationPreconditionError(f"Message {message_id} is not an assistant reply")
        if index == 0 or conversation[index - 1].role != "user":
            raise RegenerationPreconditionError(f"Message {message_id} has no preceding user message")
        return index

    def _auxiliary_context(self, session: "PromptSession", extra: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        state = session.state
        aux: Dict[str, Any] = {
            "project_id": state.project_id,
            "knowledge": list(session.knowledge),
            "framework": state.context.framework,
            "stage": state.context.stage,
            "tool": state.context.tool,
            "industry": state.industry,
        }
        aux.update(extra or {})
        return aux

    async def _generate_into_placeholder(
        self,
        session: "PromptSession",
        *,
        operation: str,
        user_message: str,
        history: List[HistoryTurn],
        reply_prefix: str,
        placeholder_added: bool = False,
        extra_context: Optional[Dict[str, Any]] = None,
    ) -> OperationResult:
        state = session.state
        if not placeholder_added:
            state.conversation.append(ConversationMessage.placeholder())
        self.commit(session)

        request = GenerationRequest(
            user_message=user_message,
            context_content=state.active_content,
            history=history,
            auxiliary_context=self._auxiliary_context(session, extra_context),
        )
        await self._bump_run_count(session)
        response = await self._call(request, operation)
        return self._settle(session, response, reply_prefix)

    async def _bump_run_count(self, session: "PromptSession") -> None:
        session.state.run_count += 1
        if self._store is None:
            return
        try:
            await self._store.increment_run_count(session.prompt_id)
        except KeyError:
            logger.debug("Run count not stored: prompt %s has no remote row", session.prompt_id)
        except Exception as exc:
            logger.warning("Run count update for %s failed: %s", session.prompt_id, exc)

    async def _call(self, request: GenerationRequest, operation: str) -> GenerationResponse:
        try:
            response = await self._generation.generate(request)
            if response.success and not (response.response or "").strip():
                raise GenerationFailure("Failed to generate AI response")
        except GenerationFailure as exc:
            response = GenerationResponse(success=False, error=str(exc))
        except Exception as exc:
            logger.warning("Generation for %s raised: %s", operation, exc)
            response = GenerationResponse(success=False, error=str(exc) or exc.__class__.__name__)
        GENERATION_REQUESTS.labels(operation=operation, outcome="success" if response.success else "failure").inc()
        return response

    def _settle(self, session: "PromptSession", response: GenerationResponse, reply_prefix: str) -> OperationResult:
        conversation = session.state.conversation
        index = next((i for i, m in enumerate(conversation) if m.is_placeholder), None)
        if index is not None:
            del conversation[index]
        if session.closed:
            logger.info("Prompt %s was closed mid-generation; reply discarded", session.prompt_id)
            return OperationResult.failure(ErrorKind.PROMPT_NOT_FOUND, "Prompt view was closed before the reply arrived")

        if response.success:
            reply = ConversationMessage.assistant(response.response or "", prefix=reply_prefix)
        else:
            error = response.error or "Unknown error"
            reply = ConversationMessage.assistant(ERROR_MESSAGE_TEMPLATE.format(error=error), prefix="ai-error")
        if index is None or index >= len(conversation):
            conversation.append(reply)
        else:
            conversation.insert(index, reply)
        self.commit(session)

        if response.success:
            return OperationResult.ok(session.conversation_copy(), content=reply.content)
        return OperationResult.failure(
            ErrorKind.GENERATION_FAILURE,
            response.error or "Unknown error",
            session.conversation_copy(),
            content=reply.content,
        )
