import sys
from pathlib import Path

import pytest
import pytest_asyncio

ROOT = Path(__file__).resolve().parents[1]
root_str = str(ROOT)
if root_str not in sys.path:
    sys.path.insert(0, root_str)

from src.prompt_engine.config import EngineSettings  # noqa: E402
from src.prompt_engine.infrastructure.prompt_store import InMemoryPromptStore  # noqa: E402
from tests.utils import FakeGenerationService, make_record  # noqa: E402


@pytest.fixture(autouse=True)
def _no_redis(monkeypatch):
    """Keep event publication offline unless a test opts in."""
    monkeypatch.delenv("REDIS_URL", raising=False)
    from src.prompt_engine.infrastructure import events

    monkeypatch.setattr(events, "_publisher", None, raising=False)


@pytest.fixture
def settings() -> EngineSettings:
    return EngineSettings(save_debounce_ms=20, tailor_poll_attempts=5, tailor_poll_interval_ms=5)


@pytest.fixture
def store() -> InMemoryPromptStore:
    return InMemoryPromptStore()


@pytest.fixture
def generation() -> FakeGenerationService:
    return FakeGenerationService()


@pytest.fixture
def manager(store, generation, settings):
    from src.prompt_engine.core.session import SessionManager

    return SessionManager(store, generation, settings=settings)


@pytest_asyncio.fixture
async def session(manager, store):
    await store.save_prompt(make_record())
    loaded = await manager.load_prompt("p-1")
    yield loaded
    await manager.shutdown()
