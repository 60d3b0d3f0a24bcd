from __future__ import annotations

import asyncio
from typing import List, Optional

from src.prompt_engine.domain.generation_models import GenerationRequest, GenerationResponse
from src.prompt_engine.domain.prompt_models import PromptContextLabels, PromptRecord


class FakeGenerationService:
    """Records every request and answers from a queue (default: echo)."""

    def __init__(self, responses: Optional[List[object]] = None) -> None:
        self.requests: List[GenerationRequest] = []
        self.responses: List[object] = list(responses or [])
        self.gate: Optional[asyncio.Event] = None

    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        self.requests.append(request)
        if self.gate is not None:
            await self.gate.wait()
        if self.responses:
            item = self.responses.pop(0)
            if isinstance(item, BaseException):
                raise item
            if isinstance(item, GenerationResponse):
                return item
            return GenerationResponse(success=True, response=str(item))
        return GenerationResponse(success=True, response=f"reply to: {request.user_message}")


def make_record(prompt_id: str = "p-1", **overrides) -> PromptRecord:
    data = {
        "prompt_id": prompt_id,
        "project_id": "proj-1",
        "content": "Original prompt text",
        "variables": {"audience": "designers"},
        "output": "First generated answer",
        "context": PromptContextLabels(framework="Design Thinking", stage="Empathize", tool="User Interviews"),
        "industry": "Healthcare",
        "created_at": "2024-05-01T10:00:00.000Z",
    }
    data.update(overrides)
    return PromptRecord(**data)
