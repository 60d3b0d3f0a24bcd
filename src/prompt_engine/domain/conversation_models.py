from __future__ import annotations

from datetime import UTC, datetime
from typing import List, Literal
import uuid

from pydantic import BaseModel, Field

# Reserved message ids. The typing placeholder is never persisted; the
# bootstrap message is shown but not replayed to the generation service.
TYPING_PLACEHOLDER_ID = "typing-indicator"
BOOTSTRAP_MESSAGE_ID = "initial"
PLACEHOLDER_CONTENT = "..."

Role = Literal["user", "assistant"]


def now_iso() -> str:
    return datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def new_message_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


class ConversationMessage(BaseModel):
    id: str
    role: Role
    content: str
    timestamp: str = Field(default_factory=now_iso)

    @property
    def is_placeholder(self) -> bool:
        return self.id == TYPING_PLACEHOLDER_ID

    @property
    def is_bootstrap(self) -> bool:
        return self.id == BOOTSTRAP_MESSAGE_ID

    @classmethod
    def user(cls, content: str) -> "ConversationMessage":
        return cls(id=new_message_id("user"), role="user", content=content)

    @classmethod
    def assistant(cls, content: str, prefix: str = "ai") -> "ConversationMessage":
        return cls(id=new_message_id(prefix), role="assistant", content=content)

    @classmethod
    def placeholder(cls) -> "ConversationMessage":
        return cls(id=TYPING_PLACEHOLDER_ID, role="assistant", content=PLACEHOLDER_CONTENT)


class HistoryTurn(BaseModel):
    role: Role
    content: str


def history_for_generation(messages: List[ConversationMessage]) -> List[HistoryTurn]:
    """Turns sent to the generation service: placeholder and bootstrap entries are dropped."""
    return [
        HistoryTurn(role=m.role, content=m.content)
        for m in messages
        if not m.is_placeholder and not m.is_bootstrap
    ]
