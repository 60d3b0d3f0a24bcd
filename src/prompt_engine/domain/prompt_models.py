from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from .conversation_models import ConversationMessage, now_iso
from .destination_models import DestinationState

ORIGINAL_VERSION_ID = "original"
ORIGINAL_VERSION_TITLE = "Original Prompt"


class PromptContextLabels(BaseModel):
    framework: str = "Custom Prompt"
    stage: str = "Library"
    tool: str = "Custom Prompt"


class PromptRecord(BaseModel):
    """Remote representation of a prompt row."""

    prompt_id: str
    project_id: Optional[str] = None
    content: str
    variables: Dict[str, str] = Field(default_factory=dict)
    output: Optional[str] = None
    conversation_blob: Optional[str] = None
    destination: Optional[DestinationState] = None
    context: PromptContextLabels = Field(default_factory=PromptContextLabels)
    industry: Optional[str] = None
    structured_origin_id: Optional[str] = None
    run_count: int = 0
    created_at: str = Field(default_factory=now_iso)
    updated_at: str = Field(default_factory=now_iso)


class SavedPromptVersion(BaseModel):
    id: str
    title: str
    content: str
    timestamp: str = Field(default_factory=now_iso)
    conversation: List[ConversationMessage] = Field(default_factory=list)
    active: bool = False


class PromptState(BaseModel):
    """In-memory aggregate for one prompt while its view is open."""

    prompt_id: str
    project_id: Optional[str] = None
    original_content: str
    active_content: str
    draft_content: str
    variables: Dict[str, str] = Field(default_factory=dict)
    conversation: List[ConversationMessage] = Field(default_factory=list)
    versions: List[SavedPromptVersion] = Field(default_factory=list)
    destination: Optional[DestinationState] = None
    context: PromptContextLabels = Field(default_factory=PromptContextLabels)
    industry: Optional[str] = None
    structured_origin_id: Optional[str] = None
    run_count: int = 0

    @property
    def active_version(self) -> Optional[SavedPromptVersion]:
        for version in self.versions:
            if version.active:
                return version
        return None


class LibraryRecord(BaseModel):
    title: str
    content: str
    framework: str
    stage: str
    tool: str
    variable_names: List[str] = Field(default_factory=list)
    description: str = ""
    project_id: Optional[str] = None
    original_prompt_id: Optional[str] = None
    created_at: str = Field(default_factory=now_iso)
