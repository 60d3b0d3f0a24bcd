from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ...core.session import PromptSession, SessionManager, get_session_manager
from ...domain.api_models import (
    ContentUpdate,
    DestinationSelect,
    LoadPromptRequest,
    MessageCreate,
    PromptStateView,
)
from ...domain.prompt_models import LibraryRecord, SavedPromptVersion
from ...domain.results import OperationResult
from ...errors import ErrorKind, PromptNotFound

router = APIRouter(prefix="/prompts", tags=["prompts"])

_STATUS_FOR_ERROR = {
    ErrorKind.PROMPT_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.VERSION_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.BUSY: status.HTTP_409_CONFLICT,
    ErrorKind.INVALID_INPUT: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorKind.REGENERATION_PRECONDITION: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorKind.GENERATION_FAILURE: status.HTTP_502_BAD_GATEWAY,
    ErrorKind.TAILORING_FAILURE: status.HTTP_502_BAD_GATEWAY,
    ErrorKind.PERSISTENCE_FAILURE: status.HTTP_502_BAD_GATEWAY,
    ErrorKind.RETRIEVAL_TIMEOUT: status.HTTP_504_GATEWAY_TIMEOUT,
}


def _session(manager: SessionManager, prompt_id: str) -> PromptSession:
    try:
        return manager.get(prompt_id)
    except PromptNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


def _checked(result: OperationResult) -> OperationResult:
    if result.success:
        return result
    code = _STATUS_FOR_ERROR.get(result.error, status.HTTP_400_BAD_REQUEST)
    # The body keeps the thread so the client can show the error reply.
    raise HTTPException(status_code=code, detail=result.model_dump(mode="json"))


def _view(session: PromptSession) -> PromptStateView:
    state = session.state
    active = state.active_version
    return PromptStateView(
        prompt_id=state.prompt_id,
        project_id=state.project_id,
        original_content=state.original_content,
        active_content=state.active_content,
        draft_content=state.draft_content,
        variables=state.variables,
        conversation=session.conversation_copy(),
        versions=[v.model_copy(deep=True) for v in state.versions],
        active_version_id=active.id if active else None,
        destination=state.destination,
        context=state.context,
        run_count=state.run_count,
        generating=session.is_generating,
    )


@router.get("/library", response_model=List[LibraryRecord])
async def list_library(
    project_id: Optional[str] = Query(None),
    manager: SessionManager = Depends(get_session_manager),
) -> List[LibraryRecord]:
    return await manager.store.list_library_records(project_id)


@router.post("/{prompt_id}/session", response_model=PromptStateView)
async def open_prompt(
    prompt_id: str,
    req: Optional[LoadPromptRequest] = None,
    manager: SessionManager = Depends(get_session_manager),
) -> PromptStateView:
    knowledge = None
    if req is not None and req.knowledge is not None:
        knowledge = [entry.model_dump() for entry in req.knowledge]
    try:
        session = await manager.load_prompt(prompt_id, knowledge=knowledge)
    except PromptNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return _view(session)


@router.get("/{prompt_id}", response_model=PromptStateView)
async def get_prompt_state(prompt_id: str, manager: SessionManager = Depends(get_session_manager)) -> PromptStateView:
    return _view(_session(manager, prompt_id))


@router.delete("/{prompt_id}/session", status_code=status.HTTP_204_NO_CONTENT)
async def close_prompt(
    prompt_id: str,
    flush: bool = Query(False),
    manager: SessionManager = Depends(get_session_manager),
) -> None:
    if not await manager.close(prompt_id, flush=flush):
        raise HTTPException(status_code=404, detail=f"Prompt not loaded: {prompt_id}")


@router.post("/{prompt_id}/messages", response_model=OperationResult)
async def send_message(
    prompt_id: str,
    req: MessageCreate,
    manager: SessionManager = Depends(get_session_manager),
) -> OperationResult:
    session = _session(manager, prompt_id)
    return _checked(await manager.engine.send_follow_up(session, req.text))


@router.post("/{prompt_id}/messages/{message_id}/regenerate", response_model=OperationResult)
async def regenerate_message(
    prompt_id: str,
    message_id: str,
    manager: SessionManager = Depends(get_session_manager),
) -> OperationResult:
    session = _session(manager, prompt_id)
    return _checked(await manager.engine.regenerate(session, message_id))


@router.post("/{prompt_id}/use-as-new", response_model=OperationResult)
async def use_as_new_prompt(
    prompt_id: str,
    req: MessageCreate,
    manager: SessionManager = Depends(get_session_manager),
) -> OperationResult:
    session = _session(manager, prompt_id)
    return _checked(await manager.engine.use_as_new_prompt(session, req.text))


@router.put("/{prompt_id}/content", response_model=OperationResult)
async def edit_content(
    prompt_id: str,
    req: ContentUpdate,
    manager: SessionManager = Depends(get_session_manager),
) -> OperationResult:
    session = _session(manager, prompt_id)
    return _checked(manager.engine.edit_active_content(session, req.content))


@router.get("/{prompt_id}/versions", response_model=List[SavedPromptVersion])
async def list_versions(prompt_id: str, manager: SessionManager = Depends(get_session_manager)) -> List[SavedPromptVersion]:
    return manager.versions.list_versions(_session(manager, prompt_id))


@router.post("/{prompt_id}/versions", response_model=OperationResult, status_code=status.HTTP_201_CREATED)
async def create_version(prompt_id: str, manager: SessionManager = Depends(get_session_manager)) -> OperationResult:
    session = _session(manager, prompt_id)
    return _checked(await manager.versions.create_version(session))


@router.post("/{prompt_id}/versions/{version_id}/activate", response_model=OperationResult)
async def switch_version(
    prompt_id: str,
    version_id: str,
    manager: SessionManager = Depends(get_session_manager),
) -> OperationResult:
    session = _session(manager, prompt_id)
    return _checked(manager.versions.switch_to_version(session, version_id))


@router.put("/{prompt_id}/destination", response_model=OperationResult)
async def select_destination(
    prompt_id: str,
    req: DestinationSelect,
    manager: SessionManager = Depends(get_session_manager),
) -> OperationResult:
    session = _session(manager, prompt_id)
    context = manager.destinations.build_context(
        session,
        req.destination,
        sub_provider=req.sub_provider,
        user_intent=req.user_intent,
        metadata=req.metadata,
    )
    return _checked(await manager.destinations.select_destination(session, context))


@router.delete("/{prompt_id}/destination", response_model=OperationResult)
async def clear_destination(prompt_id: str, manager: SessionManager = Depends(get_session_manager)) -> OperationResult:
    session = _session(manager, prompt_id)
    return _checked(await manager.destinations.clear_destination(session))
