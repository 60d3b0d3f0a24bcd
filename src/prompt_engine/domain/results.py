from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field

from ..errors import ErrorKind
from .conversation_models import ConversationMessage


class OperationResult(BaseModel):
    """Returned by every public engine operation; callers inspect, never catch."""

    success: bool
    error: Optional[ErrorKind] = None
    message: Optional[str] = None
    content: Optional[str] = None
    conversation: List[ConversationMessage] = Field(default_factory=list)

    @classmethod
    def ok(
        cls,
        conversation: Optional[List[ConversationMessage]] = None,
        content: Optional[str] = None,
        message: Optional[str] = None,
    ) -> "OperationResult":
        return cls(success=True, conversation=list(conversation or []), content=content, message=message)

    @classmethod
    def failure(
        cls,
        error: ErrorKind,
        message: str,
        conversation: Optional[List[ConversationMessage]] = None,
        content: Optional[str] = None,
    ) -> "OperationResult":
        return cls(
            success=False,
            error=error,
            message=message,
            conversation=list(conversation or []),
            content=content,
        )
