from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .conversation_models import now_iso


class DestinationKind(str, Enum):
    CHAT_PROVIDER = "chat-provider"
    VISUAL_BOARD = "visual-board"
    WORKSHOP_BOARD = "workshop-board"
    DESIGN_TOOL = "design-tool"


class ChatSubProvider(str, Enum):
    CHATGPT = "ChatGPT"
    CLAUDE = "Claude"
    GEMINI = "Gemini"
    DEEPSEEK = "DeepSeek"
    OTHER = "Other"


DESTINATION_LABELS: Dict[DestinationKind, str] = {
    DestinationKind.CHAT_PROVIDER: "AI Provider",
    DestinationKind.VISUAL_BOARD: "Miro",
    DestinationKind.WORKSHOP_BOARD: "FigJam",
    DestinationKind.DESIGN_TOOL: "Figma",
}


class DestinationContext(BaseModel):
    destination: DestinationKind
    sub_provider: Optional[ChatSubProvider] = None
    user_intent: str = ""
    original_prompt: str = ""
    variables: Dict[str, str] = Field(default_factory=dict)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class DestinationState(BaseModel):
    destination: DestinationKind
    sub_provider: Optional[ChatSubProvider] = None
    user_intent: str = ""
    tailored_prompt: Optional[str] = None
    clarifying_questions: List[str] = Field(default_factory=list)
    tailored_at: str = Field(default_factory=now_iso)


class TailoringResponse(BaseModel):
    success: bool
    errors: List[str] = Field(default_factory=list)
    # Set when the service hands the text back directly instead of only
    # writing it onto the prompt row.
    tailored_prompt: Optional[str] = None
    clarifying_questions: List[str] = Field(default_factory=list)
