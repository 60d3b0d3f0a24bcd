from __future__ import annotations

import asyncio
import json
import logging
import os
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol

import requests
from langchain_openai import ChatOpenAI
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..domain.generation_models import GenerationRequest, GenerationResponse
from .model_router import ModelRouter, ProviderSelection

logger = logging.getLogger(__name__)
LOG = logging.getLogger("prompt_engine.llm")

_KNOWLEDGE_SNIPPET_LIMIT = 12000
_LOCAL_TIMEOUT = (
    int(os.getenv("PROMPT_ENGINE_LLM_CONNECT_TIMEOUT", "3")),
    int(os.getenv("PROMPT_ENGINE_LLM_READ_TIMEOUT", "90")),
)


class GenerationService(Protocol):
    async def generate(self, request: GenerationRequest) -> GenerationResponse: ...


def build_http_session() -> requests.Session:
    session = requests.Session()
    retry = Retry(
        total=2,
        backoff_factor=0.5,
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=frozenset(["POST", "GET"]),
    )
    adapter = HTTPAdapter(max_retries=retry, pool_connections=10, pool_maxsize=10)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


class LocalLLMClient:
    """Client for a self-hosted model speaking the OpenAI or Ollama wire format."""

    def __init__(self, base_url: str, model: str) -> None:
        self.base_url = base_url.rstrip("/")
        self.model = model
        self._session = build_http_session()
        self.api_style = (os.getenv("PROMPT_ENGINE_LLM_LOCAL_API") or "auto").lower()

    def invoke(self, messages: List[Dict[str, str]]) -> str:
        if self.api_style == "ollama":
            return self._invoke_ollama(messages)
        if self.api_style == "openai":
            return self._invoke_openai(messages)
        try:
            return self._invoke_openai(messages)
        except requests.exceptions.RequestException as exc:
            LOG.warning(
                "local_llm_openai_failed_switching_to_ollama",
                extra={"base_url": self.base_url, "model": self.model, "err": str(exc)},
            )
            self.api_style = "ollama"
            return self._invoke_ollama(messages)

    def _invoke_openai(self, messages: List[Dict[str, str]]) -> str:
        LOG.debug("local_llm_invoke", extra={"model": self.model, "base_url": self.base_url})
        resp = self._session.post(
            f"{self.base_url}/v1/chat/completions",
            json={"model": self.model, "messages": messages, "stream": False},
            timeout=_LOCAL_TIMEOUT,
        )
        resp.raise_for_status()
        data = resp.json()
        choices = data.get("choices") or []
        if choices:
            content = (choices[0].get("message") or {}).get("content")
            if content:
                return content
        return data.get("response") or data.get("text") or ""

    def _invoke_ollama(self, messages: List[Dict[str, str]]) -> str:
        resp = self._session.post(
            f"{self.base_url}/api/generate",
            json={"model": self.model, "prompt": self._messages_to_prompt(messages), "stream": False},
            timeout=_LOCAL_TIMEOUT,
        )
        resp.raise_for_status()
        data = resp.json()
        return data.get("response") or data.get("text") or ""

    @staticmethod
    def _messages_to_prompt(messages: List[Dict[str, str]]) -> str:
        parts: List[str] = []
        for msg in messages:
            role = (msg.get("role") or "user").strip().upper()
            parts.append(f"{role}: {msg.get('content') or ''}")
        parts.append("ASSISTANT:")
        return "\n".join(parts)


def _base_url_for(selection: ProviderSelection, env: Mapping[str, str]) -> Optional[str]:
    if selection.base_url_env and env.get(selection.base_url_env):
        return env.get(selection.base_url_env)
    return selection.default_base_url


def _build_client(selection: ProviderSelection, model: str, env: Mapping[str, str]) -> Any:
    base_url = _base_url_for(selection, env)
    if selection.name == "local":
        return LocalLLMClient(base_url=base_url or "http://127.0.0.1:11434", model=model)
    api_key = env.get(selection.api_key_env) if selection.api_key_env else None
    if selection.requires_api_key and not api_key:
        raise RuntimeError("LLM not configured")
    return ChatOpenAI(api_key=api_key, base_url=base_url, model=model, temperature=0.7, max_tokens=800)


def _knowledge_block(entries: Iterable[Any]) -> str:
    parts: List[str] = []
    for entry in entries or []:
        if not isinstance(entry, dict):
            continue
        title = str(entry.get("title") or "Untitled")
        content = entry.get("content")
        if not isinstance(content, str) or not content.strip():
            continue
        snippet = content if len(content) <= _KNOWLEDGE_SNIPPET_LIMIT else content[:_KNOWLEDGE_SNIPPET_LIMIT] + "\n\n[truncated]"
        parts.append(f"{title}: {snippet}")
    return "\n\n".join(parts)


def _prompt_context_lines(aux: Dict[str, Any]) -> List[str]:
    lines: List[str] = []
    for key, label in (
        ("framework", "Framework"),
        ("stage", "Stage"),
        ("tool", "Tool"),
        ("industry", "Industry"),
        ("destination", "Destination"),
        ("user_intent", "User intent"),
    ):
        value = aux.get(key)
        if value:
            lines.append(f"- {label}: {value}")
    return lines


def build_conversation_messages(request: GenerationRequest) -> List[Dict[str, str]]:
    """Assemble the chat-completions message list for one generation request."""

    aux = request.auxiliary_context or {}
    knowledge = _knowledge_block(aux.get("knowledge") or [])
    sys_lines = [
        "You are an AI assistant helping with UX design and workflow optimization. "
        "You have access to the user's initial prompt context and project knowledge base.",
        "",
        "CONVERSATION GUIDELINES:",
        "- Provide concise, actionable responses",
        "- Reference the initial prompt context when relevant",
        "- Use knowledge base information to provide specific, contextual advice",
        "- Be conversational but focused",
        "- Ask clarifying questions when needed",
        "- Suggest practical next steps",
        "",
        "INITIAL PROMPT CONTEXT:",
        request.context_content or "No initial prompt provided",
        "",
    ]
    context_lines = _prompt_context_lines(aux)
    if context_lines:
        sys_lines.append("PROMPT METADATA:")
        sys_lines.extend(context_lines)
        sys_lines.append("")
    if knowledge:
        sys_lines.append("KNOWLEDGE BASE CONTEXT:\n" + knowledge)
    else:
        sys_lines.append("No additional knowledge base context available")
    sys_lines.append("")
    sys_lines.append("Respond to the user's questions and requests based on this context. Keep responses concise and actionable.")

    msgs: List[Dict[str, str]] = [{"role": "system", "content": "\n".join(sys_lines)}]
    for turn in request.history:
        msgs.append({"role": turn.role, "content": turn.content})
    msgs.append({"role": "user", "content": request.user_message})
    return msgs


class ChatGenerationService:
    """Generation service backed by the routed LLM provider.

    Blocking SDK calls run in a worker thread so the event loop stays free
    for other prompts while one is generating.
    """

    def __init__(
        self,
        router: Optional[ModelRouter] = None,
        env: Optional[Mapping[str, str]] = None,
        purpose: str = "conversation",
    ) -> None:
        self._env = env if env is not None else os.environ
        self._router = router or ModelRouter(env=self._env)
        self._purpose = purpose

    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        return await asyncio.to_thread(self._generate_sync, request)

    def _generate_sync(self, request: GenerationRequest) -> GenerationResponse:
        purpose = str((request.auxiliary_context or {}).get("purpose") or self._purpose)
        selection = self._router.maybe_select_provider(purpose)
        if selection is None:
            LOG.warning("llm_no_provider", extra={"purpose": purpose})
            return GenerationResponse(success=False, error="LLM not configured")
        models = [selection.model, *selection.fallback_models]

        msgs = build_conversation_messages(request)
        last_error: Optional[str] = None
        for model in models:
            try:
                client = _build_client(selection, model, self._env)
                res = client.invoke(msgs)
                text = res.content if hasattr(res, "content") else str(res)
                text = (text or "").strip()
                if not text:
                    last_error = f"Empty response from model {model}"
                    LOG.warning("llm_empty_response", extra={"provider": selection.name, "model": model})
                    continue
                LOG.info("llm_response_ok", extra={"provider": selection.name, "model": model})
                return GenerationResponse(success=True, response=text, provider=selection.name, model=model)
            except Exception as exc:
                last_error = str(exc)
                LOG.warning("llm_model_failed", extra={"provider": selection.name, "model": model, "err": last_error})
                continue
        logger.error("All model attempts failed for provider %s", selection.name)
        return GenerationResponse(
            success=False,
            error=f"All model attempts failed: {last_error or 'unknown error'}",
            provider=selection.name,
        )


class HttpGenerationService:
    """Generation service that calls a hosted conversation endpoint.

    The endpoint accepts the request body used by the web client's
    ``ai-conversation`` function and answers ``{success, response, error}``.
    """

    def __init__(self, url: str, api_key: Optional[str] = None, session: Optional[requests.Session] = None) -> None:
        self._url = url
        self._api_key = api_key
        self._session = session or build_http_session()

    def _payload(self, request: GenerationRequest) -> Dict[str, Any]:
        aux = dict(request.auxiliary_context or {})
        return {
            "userMessage": request.user_message,
            "initialPrompt": request.context_content,
            "conversationHistory": [
                {"type": "user" if t.role == "user" else "ai", "content": t.content} for t in request.history
            ],
            "projectId": aux.pop("project_id", None),
            "knowledgeContext": aux.pop("knowledge", []),
            "promptContext": aux,
        }

    def _post(self, request: GenerationRequest) -> GenerationResponse:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        try:
            resp = self._session.post(self._url, json=self._payload(request), headers=headers, timeout=_LOCAL_TIMEOUT)
            data = resp.json()
        except (requests.exceptions.RequestException, json.JSONDecodeError) as exc:
            LOG.warning("conversation_endpoint_failed", extra={"url": self._url, "err": str(exc)})
            return GenerationResponse(success=False, error=str(exc))
        if not isinstance(data, dict):
            return GenerationResponse(success=False, error="Malformed response from conversation endpoint")
        if not data.get("success"):
            return GenerationResponse(success=False, error=str(data.get("error") or f"HTTP {resp.status_code}"))
        return GenerationResponse(success=True, response=data.get("response"), model=data.get("model"))

    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        return await asyncio.to_thread(self._post, request)


def get_generation_service() -> GenerationService:
    url = os.getenv("PROMPT_ENGINE_CONVERSATION_URL")
    if url:
        return HttpGenerationService(url, api_key=os.getenv("PROMPT_ENGINE_CONVERSATION_KEY"))
    return ChatGenerationService()
