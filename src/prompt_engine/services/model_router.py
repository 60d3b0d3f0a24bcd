"""Routing helpers for selecting the model provider behind a generation call.

The router only picks a provider configuration; instantiating the client is
left to the generation service so the policy stays unit-testable without
importing SDKs.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Set, Tuple


@dataclass(frozen=True)
class ProviderSelection:
    """Details about the provider that should handle a request."""

    name: str
    model: str
    api_key_env: Optional[str]
    base_url_env: Optional[str] = None
    default_base_url: Optional[str] = None
    requires_api_key: bool = True
    fallback_models: Tuple[str, ...] = field(default_factory=tuple)


class ModelRouter:
    """Policy-based provider selection."""

    PROVIDER_CONFIG: Dict[str, Dict[str, object]] = {
        "openai": {
            "api_key_env": "OPENAI_API_KEY",
            "base_url_env": "OPENAI_BASE_URL",
            "model_env": "OPENAI_MODEL",
            "default_model": "gpt-4o-mini",
            "default_base_url": "https://api.openai.com/v1",
            "model_fallbacks": ("gpt-4o", "gpt-4-turbo", "gpt-3.5-turbo"),
        },
        "gemini": {
            "api_key_env": "GEMINI_API_KEY",
            "base_url_env": "GEMINI_BASE_URL",
            "model_env": "GEMINI_MODEL",
            "default_model": "gemini-2.5-flash",
            "default_base_url": "https://generativelanguage.googleapis.com/v1beta/openai",
        },
        "xai": {
            "api_key_env": "XAI_API_KEY",
            "base_url_env": "XAI_BASE_URL",
            "model_env": "XAI_MODEL",
            "default_model": "grok-2-latest",
            "default_base_url": "https://api.x.ai/v1",
        },
        "local": {
            "api_key_env": "LOCAL_API_KEY",
            "base_url_env": "LOCAL_BASE_URL",
            "model_env": "LOCAL_MODEL",
            "default_model": "llama3.1:8b",
            "default_base_url": "http://127.0.0.1:11434",
            "requires_api_key": False,
        },
    }

    ROUTING_POLICY: Dict[str, Tuple[str, ...]] = {
        # Follow-up chat favours the cheapest hosted model.
        "conversation": ("openai", "gemini", "xai", "local"),
        # Destination-tailored turns produce longer structured output.
        "tailored_response": ("openai", "xai", "gemini", "local"),
    }

    def __init__(
        self,
        env: Optional[Mapping[str, str]] = None,
        allowed_providers: Optional[Iterable[str]] = None,
    ) -> None:
        self._env = env if env is not None else os.environ
        self._allowed: Optional[Set[str]] = set(allowed_providers) if allowed_providers else None
        preferred = (self._env.get("PROMPT_ENGINE_MODEL_PROVIDER") or "").strip().lower()
        self._preferred_provider = preferred or None

    def provider_available(self, provider: str) -> bool:
        cfg = self.PROVIDER_CONFIG.get(provider)
        if not cfg:
            return False
        if self._allowed is not None and provider not in self._allowed:
            return False
        if bool(cfg.get("requires_api_key", True)):
            api_key_env = cfg.get("api_key_env")
            return bool(api_key_env and self._env.get(str(api_key_env)))
        # Keyless providers (local) must be switched on explicitly and pointed at a host.
        if (self._env.get("PROMPT_ENGINE_ENABLE_LOCAL_PROVIDER") or "").strip() != "1":
            return False
        base_url_env = cfg.get("base_url_env")
        return bool(base_url_env and self._env.get(str(base_url_env)))

    def resolve_provider(self, provider: str) -> ProviderSelection:
        cfg = self.PROVIDER_CONFIG[provider]
        model_env = str(cfg.get("model_env") or "")
        model = self._env.get(model_env) or str(cfg.get("default_model") or "")
        fallbacks: List[str] = [m for m in cfg.get("model_fallbacks", ()) if m != model]  # type: ignore[union-attr]
        return ProviderSelection(
            name=provider,
            model=model,
            api_key_env=cfg.get("api_key_env"),  # type: ignore[arg-type]
            base_url_env=cfg.get("base_url_env"),  # type: ignore[arg-type]
            default_base_url=cfg.get("default_base_url"),  # type: ignore[arg-type]
            requires_api_key=bool(cfg.get("requires_api_key", True)),
            fallback_models=tuple(fallbacks),
        )

    def select_provider(self, purpose: str) -> ProviderSelection:
        """Return the provider selected for ``purpose``.

        Raises
        ------
        RuntimeError
            If none of the providers configured for the purpose is available.
        """

        priority = list(self.ROUTING_POLICY.get(purpose, self.ROUTING_POLICY["conversation"]))
        if self._preferred_provider and self._preferred_provider in self.PROVIDER_CONFIG:
            priority = [self._preferred_provider] + [p for p in priority if p != self._preferred_provider]
        for provider in priority:
            if self.provider_available(provider):
                return self.resolve_provider(provider)
        raise RuntimeError("No active model provider available for this task.")

    def maybe_select_provider(self, purpose: str) -> Optional[ProviderSelection]:
        try:
            return self.select_provider(purpose)
        except RuntimeError:
            return None
