from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional, Protocol

import requests

from ..domain.destination_models import DESTINATION_LABELS, DestinationContext, DestinationState, TailoringResponse
from ..errors import TailoringFailure
from ..infrastructure.events import publish_event
from ..infrastructure.prompt_store import PromptStore
from ..observability.metrics import TAILORING_RUNS
from .destination_tailors import tailor_for_destination
from .generation import build_http_session

logger = logging.getLogger(__name__)


class TailoringService(Protocol):
    async def tailor(self, context: DestinationContext, prompt_id: str) -> TailoringResponse: ...


class LocalTailoringService:
    """Builds tailored prompts in-process.

    The destination state is written onto the prompt row before returning and
    the tailored text is also handed back, so callers do not have to poll.
    """

    def __init__(self, store: PromptStore) -> None:
        self._store = store

    async def tailor(self, context: DestinationContext, prompt_id: str) -> TailoringResponse:
        label = str(getattr(context.destination, "value", context.destination))
        try:
            tailored_prompt, questions = tailor_for_destination(context)
        except TailoringFailure as exc:
            logger.warning("Tailoring rejected for %s: %s", prompt_id, exc)
            TAILORING_RUNS.labels(destination=label, outcome="rejected").inc()
            return TailoringResponse(success=False, errors=[str(exc)])

        state = DestinationState(
            destination=context.destination,
            sub_provider=context.sub_provider,
            user_intent=context.user_intent,
            tailored_prompt=tailored_prompt,
            clarifying_questions=questions,
        )
        try:
            await self._store.set_destination(prompt_id, state)
        except KeyError:
            TAILORING_RUNS.labels(destination=label, outcome="unknown_prompt").inc()
            return TailoringResponse(success=False, errors=[f"Prompt not found: {prompt_id}"])

        publish_event(
            "destination.tailored",
            {"prompt_id": prompt_id, "destination": label, "tailored_at": state.tailored_at},
        )
        TAILORING_RUNS.labels(destination=label, outcome="accepted").inc()
        return TailoringResponse(success=True, tailored_prompt=tailored_prompt, clarifying_questions=questions)


class HttpTailoringService:
    """Calls a hosted tailoring function.

    The function only acknowledges the request; it writes the tailored prompt
    onto the prompt row itself, which the pipeline then polls for.
    """

    def __init__(self, url: str, api_key: Optional[str] = None, session: Optional[requests.Session] = None) -> None:
        self._url = url
        self._api_key = api_key
        self._session = session or build_http_session()

    @staticmethod
    def _payload(context: DestinationContext, prompt_id: str) -> Dict[str, Any]:
        return {
            "promptId": prompt_id,
            "destination": DESTINATION_LABELS[context.destination],
            "aiProvider": context.sub_provider.value if context.sub_provider else None,
            "userIntent": context.user_intent,
            "originalPrompt": context.original_prompt,
            "variables": context.variables,
            "metadata": context.metadata,
        }

    def _post(self, context: DestinationContext, prompt_id: str) -> TailoringResponse:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        try:
            resp = self._session.post(self._url, json=self._payload(context, prompt_id), headers=headers, timeout=(3, 30))
            data = resp.json()
        except (requests.exceptions.RequestException, ValueError) as exc:
            logger.warning("Tailoring endpoint failed for %s: %s", prompt_id, exc)
            return TailoringResponse(success=False, errors=[str(exc)])
        if not isinstance(data, dict):
            return TailoringResponse(success=False, errors=["Malformed response from tailoring endpoint"])
        errors = [str(e) for e in (data.get("errors") or [])]
        return TailoringResponse(success=bool(data.get("success")), errors=errors)

    async def tailor(self, context: DestinationContext, prompt_id: str) -> TailoringResponse:
        result = await asyncio.to_thread(self._post, context, prompt_id)
        label = context.destination.value
        TAILORING_RUNS.labels(destination=label, outcome="accepted" if result.success else "rejected").inc()
        return result
