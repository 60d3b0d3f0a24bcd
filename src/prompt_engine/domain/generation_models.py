from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .conversation_models import HistoryTurn


class GenerationRequest(BaseModel):
    user_message: str
    context_content: str
    history: List[HistoryTurn] = Field(default_factory=list)
    auxiliary_context: Dict[str, Any] = Field(default_factory=dict)


class GenerationResponse(BaseModel):
    success: bool
    response: Optional[str] = None
    error: Optional[str] = None
    provider: Optional[str] = None
    model: Optional[str] = None
