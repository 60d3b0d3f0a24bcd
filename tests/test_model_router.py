"""Unit tests for `ModelRouter` provider selection."""

from __future__ import annotations

from typing import Dict

import pytest

from src.prompt_engine.services.model_router import ModelRouter, ProviderSelection


def _with_env(values: Dict[str, str]) -> ModelRouter:
    """Helper to instantiate a router over an explicit environment."""

    return ModelRouter(env=dict(values))


def test_router_prefers_openai_for_conversation():
    router = _with_env({"GEMINI_API_KEY": "gemini", "OPENAI_API_KEY": "openai"})
    selection = router.select_provider("conversation")
    assert isinstance(selection, ProviderSelection)
    assert selection.name == "openai"
    assert selection.model == "gpt-4o-mini"
    assert selection.api_key_env == "OPENAI_API_KEY"
    assert selection.fallback_models == ("gpt-4o", "gpt-4-turbo", "gpt-3.5-turbo")


def test_router_falls_back_to_gemini_when_openai_missing():
    router = _with_env({"GEMINI_API_KEY": "gemini"})
    selection = router.select_provider("conversation")
    assert selection.name == "gemini"
    assert selection.model == "gemini-2.5-flash"
    assert selection.fallback_models == ()


def test_tailored_response_prefers_xai_over_gemini():
    router = _with_env({"GEMINI_API_KEY": "gemini", "XAI_API_KEY": "xai"})
    assert router.select_provider("tailored_response").name == "xai"
    assert router.select_provider("conversation").name == "gemini"


def test_unknown_purpose_uses_conversation_policy():
    router = _with_env({"OPENAI_API_KEY": "openai"})
    assert router.select_provider("something-else").name == "openai"


def test_model_override_is_dropped_from_fallbacks():
    router = _with_env({"OPENAI_API_KEY": "openai", "OPENAI_MODEL": "gpt-4o"})
    selection = router.select_provider("conversation")
    assert selection.model == "gpt-4o"
    assert "gpt-4o" not in selection.fallback_models


def test_preferred_provider_moves_to_front():
    router = _with_env(
        {"OPENAI_API_KEY": "openai", "GEMINI_API_KEY": "gemini", "PROMPT_ENGINE_MODEL_PROVIDER": "Gemini"}
    )
    assert router.select_provider("conversation").name == "gemini"


def test_allowed_providers_restrict_selection():
    router = ModelRouter(env={"OPENAI_API_KEY": "openai", "XAI_API_KEY": "xai"}, allowed_providers=["xai"])
    assert router.select_provider("conversation").name == "xai"


def test_router_requires_at_least_one_provider():
    router = ModelRouter(env={})
    with pytest.raises(RuntimeError, match="No active model provider available"):
        router.select_provider("conversation")


def test_router_maybe_select_provider_returns_none_when_unavailable():
    router = ModelRouter(env={})
    assert router.maybe_select_provider("conversation") is None


def test_local_provider_needs_flag_and_base_url():
    assert _with_env({"LOCAL_BASE_URL": "http://127.0.0.1:11434"}).maybe_select_provider("conversation") is None
    assert _with_env({"PROMPT_ENGINE_ENABLE_LOCAL_PROVIDER": "1"}).maybe_select_provider("conversation") is None

    router = _with_env(
        {
            "PROMPT_ENGINE_ENABLE_LOCAL_PROVIDER": "1",
            "LOCAL_BASE_URL": "http://127.0.0.1:11434",
            "LOCAL_MODEL": "mixtral:8x22b",
        }
    )
    selection = router.select_provider("conversation")
    assert selection.name == "local"
    assert selection.model == "mixtral:8x22b"
    assert selection.requires_api_key is False
