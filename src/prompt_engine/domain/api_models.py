from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .conversation_models import ConversationMessage
from .destination_models import ChatSubProvider, DestinationKind, DestinationState
from .prompt_models import PromptContextLabels, SavedPromptVersion


class KnowledgeEntry(BaseModel):
    title: str
    content: str


class LoadPromptRequest(BaseModel):
    knowledge: Optional[List[KnowledgeEntry]] = None


class MessageCreate(BaseModel):
    text: str = Field(min_length=1)


class ContentUpdate(BaseModel):
    content: str = Field(min_length=1)


class DestinationSelect(BaseModel):
    destination: DestinationKind
    sub_provider: Optional[ChatSubProvider] = None
    user_intent: str = ""
    metadata: Dict[str, Any] = Field(default_factory=dict)


class PromptStateView(BaseModel):
    prompt_id: str
    project_id: Optional[str] = None
    original_content: str
    active_content: str
    draft_content: str
    variables: Dict[str, str]
    conversation: List[ConversationMessage]
    versions: List[SavedPromptVersion]
    active_version_id: Optional[str] = None
    destination: Optional[DestinationState] = None
    context: PromptContextLabels
    run_count: int
    generating: bool = False
