import pytest

from src.prompt_engine.domain.conversation_models import HistoryTurn
from src.prompt_engine.domain.generation_models import GenerationRequest
from src.prompt_engine.services import generation as generation_module
from src.prompt_engine.services.generation import (
    ChatGenerationService,
    HttpGenerationService,
    LocalLLMClient,
    build_conversation_messages,
    get_generation_service,
)


def _request(**overrides):
    params = dict(
        user_message="Add a persona section",
        context_content="Interview five clinicians.",
        history=[HistoryTurn(role="user", content="hi"), HistoryTurn(role="assistant", content="hello")],
        auxiliary_context={
            "project_id": "proj-1",
            "tool": "User Interviews",
            "industry": "Healthcare",
            "knowledge": [{"title": "Brief", "content": "Clinic onboarding takes 3 weeks."}, {"title": "Empty", "content": " "}],
        },
    )
    params.update(overrides)
    return GenerationRequest(**params)


def test_messages_carry_context_history_and_user_turn():
    msgs = build_conversation_messages(_request())

    system = msgs[0]
    assert system["role"] == "system"
    assert "INITIAL PROMPT CONTEXT:\nInterview five clinicians." in system["content"]
    assert "- Tool: User Interviews" in system["content"]
    assert "Brief: Clinic onboarding takes 3 weeks." in system["content"]
    assert "Empty:" not in system["content"]
    assert msgs[1:] == [
        {"role": "user", "content": "hi"},
        {"role": "assistant", "content": "hello"},
        {"role": "user", "content": "Add a persona section"},
    ]


def test_messages_without_knowledge_or_context():
    msgs = build_conversation_messages(_request(context_content="", history=[], auxiliary_context={}))
    content = msgs[0]["content"]
    assert "No initial prompt provided" in content
    assert "No additional knowledge base context available" in content
    assert "PROMPT METADATA:" not in content
    assert len(msgs) == 2


class _Reply:
    def __init__(self, content):
        self.content = content


class _ScriptedClient:
    def __init__(self, model, outcomes, calls):
        self.model = model
        self.outcomes = outcomes
        self.calls = calls

    def invoke(self, messages):
        self.calls.append(self.model)
        outcome = self.outcomes[self.model]
        if isinstance(outcome, Exception):
            raise outcome
        return _Reply(outcome)


def _patch_clients(monkeypatch, outcomes):
    calls = []

    def fake_build(selection, model, env):
        return _ScriptedClient(model, outcomes, calls)

    monkeypatch.setattr(generation_module, "_build_client", fake_build)
    return calls


@pytest.mark.asyncio
async def test_chat_service_returns_first_successful_model(monkeypatch):
    calls = _patch_clients(monkeypatch, {"gpt-4o-mini": "Here is a persona section."})
    service = ChatGenerationService(env={"OPENAI_API_KEY": "sk-test"})

    response = await service.generate(_request())

    assert response.success
    assert response.response == "Here is a persona section."
    assert response.provider == "openai"
    assert response.model == "gpt-4o-mini"
    assert calls == ["gpt-4o-mini"]


@pytest.mark.asyncio
async def test_chat_service_falls_back_through_models(monkeypatch):
    calls = _patch_clients(
        monkeypatch,
        {"gpt-4o-mini": RuntimeError("model overloaded"), "gpt-4o": "  ", "gpt-4-turbo": "fallback answer"},
    )
    service = ChatGenerationService(env={"OPENAI_API_KEY": "sk-test"})

    response = await service.generate(_request())

    assert response.response == "fallback answer"
    assert response.model == "gpt-4-turbo"
    assert calls == ["gpt-4o-mini", "gpt-4o", "gpt-4-turbo"]


@pytest.mark.asyncio
async def test_chat_service_reports_last_error_when_all_fail(monkeypatch):
    _patch_clients(monkeypatch, {"gemini-2.5-flash": RuntimeError("quota exceeded")})
    service = ChatGenerationService(env={"GEMINI_API_KEY": "g-test"})

    response = await service.generate(_request())

    assert not response.success
    assert response.error == "All model attempts failed: quota exceeded"


@pytest.mark.asyncio
async def test_chat_service_without_provider_is_not_configured():
    service = ChatGenerationService(env={})
    response = await service.generate(_request())
    assert not response.success
    assert response.error == "LLM not configured"


@pytest.mark.asyncio
async def test_purpose_from_request_drives_routing(monkeypatch):
    selected = []
    calls = _patch_clients(monkeypatch, {"grok-2-latest": "tailored", "gemini-2.5-flash": "chat"})

    service = ChatGenerationService(env={"GEMINI_API_KEY": "g", "XAI_API_KEY": "x"})
    tailored = await service.generate(_request(auxiliary_context={"purpose": "tailored_response"}))
    chat = await service.generate(_request())
    selected.extend([tailored.provider, chat.provider])

    assert selected == ["xai", "gemini"]
    assert calls == ["grok-2-latest", "gemini-2.5-flash"]


def test_local_client_flattens_messages_for_ollama():
    prompt = LocalLLMClient._messages_to_prompt(
        [{"role": "system", "content": "Be brief"}, {"role": "user", "content": "Hi"}]
    )
    assert prompt == "SYSTEM: Be brief\nUSER: Hi\nASSISTANT:"


class _FakeResponse:
    def __init__(self, data, status_code=200):
        self._data = data
        self.status_code = status_code

    def json(self):
        return self._data


class _FakeSession:
    def __init__(self, data, status_code=200):
        self.data = data
        self.status_code = status_code
        self.posts = []

    def post(self, url, json=None, headers=None, timeout=None):
        self.posts.append({"url": url, "json": json, "headers": headers})
        return _FakeResponse(self.data, self.status_code)


@pytest.mark.asyncio
async def test_http_service_posts_camel_case_payload():
    session = _FakeSession({"success": True, "response": "remote answer"})
    service = HttpGenerationService("https://functions.example/ai-conversation", api_key="anon", session=session)

    response = await service.generate(_request())

    assert response.success
    assert response.response == "remote answer"
    sent = session.posts[0]
    assert sent["headers"]["Authorization"] == "Bearer anon"
    body = sent["json"]
    assert body["userMessage"] == "Add a persona section"
    assert body["initialPrompt"] == "Interview five clinicians."
    assert body["conversationHistory"] == [{"type": "user", "content": "hi"}, {"type": "ai", "content": "hello"}]
    assert body["projectId"] == "proj-1"
    assert body["knowledgeContext"][0]["title"] == "Brief"
    assert body["promptContext"] == {"tool": "User Interviews", "industry": "Healthcare"}


@pytest.mark.asyncio
async def test_http_service_maps_failure_body():
    session = _FakeSession({"success": False}, status_code=500)
    service = HttpGenerationService("https://functions.example/ai-conversation", session=session)

    response = await service.generate(_request())

    assert not response.success
    assert response.error == "HTTP 500"
    assert "Authorization" not in session.posts[0]["headers"]


def test_get_generation_service_uses_endpoint_when_configured(monkeypatch):
    monkeypatch.setenv("PROMPT_ENGINE_CONVERSATION_URL", "https://functions.example/ai-conversation")
    assert isinstance(get_generation_service(), HttpGenerationService)
    monkeypatch.delenv("PROMPT_ENGINE_CONVERSATION_URL")
    assert isinstance(get_generation_service(), ChatGenerationService)
