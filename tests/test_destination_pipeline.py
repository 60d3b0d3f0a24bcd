import asyncio

import pytest

from src.prompt_engine.config import EngineSettings
from src.prompt_engine.core.destination_pipeline import is_fresh
from src.prompt_engine.core.session import SessionManager
from src.prompt_engine.domain.destination_models import (
    ChatSubProvider,
    DestinationContext,
    DestinationKind,
    DestinationState,
    TailoringResponse,
)
from src.prompt_engine.errors import ErrorKind
from tests.utils import FakeGenerationService, make_record


class SideChannelTailoring:
    """Acknowledges immediately and writes the tailored prompt later, like a remote function."""

    def __init__(self, store, text="T", delay=0.01, write=True, success=True, errors=None):
        self.store = store
        self.text = text
        self.delay = delay
        self.write = write
        self.success = success
        self.errors = errors or []
        self.contexts = []
        self._tasks = []

    async def tailor(self, context, prompt_id):
        self.contexts.append(context)
        if not self.success:
            return TailoringResponse(success=False, errors=self.errors)
        if self.write:
            self._tasks.append(asyncio.create_task(self._write_later(context, prompt_id)))
        return TailoringResponse(success=True)

    async def _write_later(self, context, prompt_id):
        await asyncio.sleep(self.delay)
        await self.store.set_destination(
            prompt_id,
            DestinationState(destination=context.destination, user_intent=context.user_intent, tailored_prompt=self.text),
        )


async def _manager_with(store, tailoring, generation=None, **settings):
    params = {"save_debounce_ms": 20, "tailor_poll_attempts": 5, "tailor_poll_interval_ms": 5}
    params.update(settings)
    manager = SessionManager(store, generation or FakeGenerationService(), tailoring, EngineSettings(**params))
    await store.save_prompt(make_record())
    session = await manager.load_prompt("p-1")
    return manager, session


@pytest.mark.asyncio
async def test_tailoring_round_trip_through_side_channel(store):
    generation = FakeGenerationService()
    tailoring = SideChannelTailoring(store, text="T")
    manager, session = await _manager_with(store, tailoring, generation)
    context = DestinationContext(
        destination=DestinationKind.VISUAL_BOARD,
        user_intent="",
        original_prompt="P",
        variables={},
        metadata={},
    )

    result = await manager.destinations.select_destination(session, context)

    assert result.success
    request = generation.requests[-1]
    assert request.user_message == "T"
    assert request.history == []
    reply = session.state.conversation[-1]
    assert reply.role == "assistant"
    assert reply.id.startswith("tailored-response-")
    assert session.state.destination.tailored_prompt == "T"
    await manager.shutdown()


@pytest.mark.asyncio
async def test_empty_intent_gets_default(store):
    tailoring = SideChannelTailoring(store)
    manager, session = await _manager_with(store, tailoring)
    context = DestinationContext(destination=DestinationKind.WORKSHOP_BOARD)

    await manager.destinations.select_destination(session, context)

    sent = tailoring.contexts[0]
    assert sent.user_intent == "Generate insights for User Interviews"
    assert sent.original_prompt == "Original prompt text"
    await manager.shutdown()


@pytest.mark.asyncio
async def test_tailoring_failure_leaves_destination_unset(store):
    generation = FakeGenerationService()
    tailoring = SideChannelTailoring(store, success=False, errors=["Invalid destination", "bad intent"])
    manager, session = await _manager_with(store, tailoring, generation)
    before = len(session.state.conversation)

    result = await manager.destinations.select_destination(
        session, DestinationContext(destination=DestinationKind.DESIGN_TOOL)
    )

    assert result.error == ErrorKind.TAILORING_FAILURE
    assert result.message == "Invalid destination, bad intent"
    assert session.state.destination is None
    assert len(session.state.conversation) == before
    assert generation.requests == []
    await manager.shutdown()


@pytest.mark.asyncio
async def test_tailoring_exception_is_a_tailoring_failure(store):
    class Exploding:
        async def tailor(self, context, prompt_id):
            raise ConnectionError("tailoring offline")

    manager, session = await _manager_with(store, Exploding())

    result = await manager.destinations.select_destination(
        session, DestinationContext(destination=DestinationKind.CHAT_PROVIDER)
    )

    assert result.error == ErrorKind.TAILORING_FAILURE
    assert "tailoring offline" in result.message
    await manager.shutdown()


@pytest.mark.asyncio
async def test_missing_side_channel_write_is_a_retrieval_timeout(store):
    generation = FakeGenerationService()
    tailoring = SideChannelTailoring(store, write=False)
    manager, session = await _manager_with(store, tailoring, generation, tailor_poll_attempts=3)

    result = await manager.destinations.select_destination(
        session, DestinationContext(destination=DestinationKind.VISUAL_BOARD)
    )

    assert result.error == ErrorKind.RETRIEVAL_TIMEOUT
    assert generation.requests == []
    assert session.state.destination is None
    await manager.shutdown()


@pytest.mark.asyncio
async def test_write_after_poll_budget_times_out(store):
    tailoring = SideChannelTailoring(store, delay=0.2)
    manager, session = await _manager_with(store, tailoring, tailor_poll_attempts=2, tailor_poll_interval_ms=5)

    result = await manager.destinations.select_destination(
        session, DestinationContext(destination=DestinationKind.VISUAL_BOARD)
    )

    assert result.error == ErrorKind.RETRIEVAL_TIMEOUT
    await manager.shutdown()


@pytest.mark.asyncio
async def test_stale_destination_from_earlier_run_is_ignored(store):
    tailoring = SideChannelTailoring(store, write=False)
    manager, session = await _manager_with(store, tailoring, tailor_poll_attempts=2)
    await store.set_destination(
        "p-1",
        DestinationState(
            destination=DestinationKind.VISUAL_BOARD,
            tailored_prompt="old text",
            tailored_at="2020-01-01T00:00:00.000Z",
        ),
    )

    result = await manager.destinations.select_destination(
        session, DestinationContext(destination=DestinationKind.VISUAL_BOARD)
    )

    assert result.error == ErrorKind.RETRIEVAL_TIMEOUT
    await manager.shutdown()


@pytest.mark.asyncio
async def test_local_tailoring_returns_text_without_polling(store):
    generation = FakeGenerationService()
    manager, session = await _manager_with(store, None, generation, tailor_poll_attempts=1, tailor_poll_interval_ms=5000)
    context = manager.destinations.build_context(
        session,
        DestinationKind.CHAT_PROVIDER,
        sub_provider=ChatSubProvider.CLAUDE,
        user_intent="Summarize interview themes for the product team",
        metadata={"team_size": 6},
    )

    result = await asyncio.wait_for(manager.destinations.select_destination(session, context), timeout=2)

    assert result.success
    tailored = generation.requests[-1].user_message
    assert tailored.startswith("DESTINATION: AI Provider (Claude)")
    assert "- Team Size: 6" in tailored
    stored = await store.get_prompt("p-1")
    assert stored.destination.tailored_prompt == tailored
    assert session.state.destination.clarifying_questions == stored.destination.clarifying_questions
    await manager.shutdown()


@pytest.mark.asyncio
async def test_build_context_drops_sub_provider_for_boards(store):
    manager, session = await _manager_with(store, None)
    context = manager.destinations.build_context(
        session, DestinationKind.VISUAL_BOARD, sub_provider=ChatSubProvider.GEMINI
    )
    assert context.sub_provider is None
    assert context.metadata["framework"] == "Design Thinking"
    assert context.variables == {"audience": "designers"}
    await manager.shutdown()


@pytest.mark.asyncio
async def test_select_destination_rejected_while_generating(store):
    generation = FakeGenerationService()
    generation.gate = asyncio.Event()
    tailoring = SideChannelTailoring(store)
    manager, session = await _manager_with(store, tailoring, generation)
    pending = asyncio.create_task(manager.engine.send_follow_up(session, "busy"))
    while not generation.requests:
        await asyncio.sleep(0)

    result = await manager.destinations.select_destination(
        session, DestinationContext(destination=DestinationKind.VISUAL_BOARD)
    )

    assert result.error == ErrorKind.BUSY
    assert tailoring.contexts == []
    assert session.state.destination is None
    generation.gate.set()
    await pending
    await manager.shutdown()


@pytest.mark.asyncio
async def test_clear_destination_removes_local_and_stored_state(store):
    manager, session = await _manager_with(store, None)
    await manager.destinations.select_destination(
        session, DestinationContext(destination=DestinationKind.DESIGN_TOOL)
    )
    assert session.state.destination is not None

    result = await manager.destinations.clear_destination(session)

    assert result.success
    assert session.state.destination is None
    stored = await store.get_prompt("p-1")
    assert stored.destination is None
    await manager.shutdown()


@pytest.mark.asyncio
async def test_other_turns_are_rejected_while_selection_polls(store):
    generation = FakeGenerationService()
    tailoring = SideChannelTailoring(store, delay=0.02)
    manager, session = await _manager_with(store, tailoring, generation, tailor_poll_attempts=40)
    selecting = asyncio.create_task(
        manager.destinations.select_destination(session, DestinationContext(destination=DestinationKind.VISUAL_BOARD))
    )
    while not tailoring.contexts:
        await asyncio.sleep(0)

    sent = await manager.engine.send_follow_up(session, "hi")
    edited = manager.engine.edit_active_content(session, "Edited while tailoring")
    again = await manager.destinations.select_destination(
        session, DestinationContext(destination=DestinationKind.DESIGN_TOOL)
    )

    assert sent.error == ErrorKind.BUSY
    assert edited.error == ErrorKind.BUSY
    assert again.error == ErrorKind.BUSY
    result = await selecting
    assert result.success
    assert session.state.destination.tailored_prompt == "T"
    assert session.state.active_content == "Original prompt text"
    assert [r.user_message for r in generation.requests] == ["T"]
    assert all(m.content != "hi" for m in session.state.conversation)
    assert not session.is_generating
    await manager.shutdown()


@pytest.mark.asyncio
async def test_slot_is_released_after_timeout(store):
    generation = FakeGenerationService()
    tailoring = SideChannelTailoring(store, write=False)
    manager, session = await _manager_with(store, tailoring, generation, tailor_poll_attempts=2)

    timed_out = await manager.destinations.select_destination(
        session, DestinationContext(destination=DestinationKind.VISUAL_BOARD)
    )
    followed = await manager.engine.send_follow_up(session, "after timeout")

    assert timed_out.error == ErrorKind.RETRIEVAL_TIMEOUT
    assert followed.success
    await manager.shutdown()


@pytest.mark.parametrize(
    "written,started,expected",
    [
        # same instant, different precision and offset notation
        ("2024-05-01T10:00:00.5+00:00", "2024-05-01T10:00:00.500Z", True),
        # 12:00 at +02:00 is 10:00 UTC, before the run started
        ("2024-05-01T12:00:00+02:00", "2024-05-01T10:30:00.000Z", False),
        ("2024-05-01T10:30:00.001Z", "2024-05-01T10:30:00.000Z", True),
        ("not a timestamp", "2024-05-01T10:30:00.000Z", False),
    ],
)
def test_freshness_compares_instants(written, started, expected):
    found = DestinationState(destination=DestinationKind.VISUAL_BOARD, tailored_prompt="T", tailored_at=written)
    assert is_fresh(found, DestinationKind.VISUAL_BOARD, started) is expected


def test_freshness_requires_matching_destination_and_text():
    stamp = "2024-05-01T10:30:00.000Z"
    other = DestinationState(destination=DestinationKind.DESIGN_TOOL, tailored_prompt="T", tailored_at=stamp)
    empty = DestinationState(destination=DestinationKind.VISUAL_BOARD, tailored_prompt=None, tailored_at=stamp)
    assert not is_fresh(other, DestinationKind.VISUAL_BOARD, stamp)
    assert not is_fresh(empty, DestinationKind.VISUAL_BOARD, stamp)
