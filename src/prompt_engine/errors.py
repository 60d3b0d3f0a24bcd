from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    GENERATION_FAILURE = "generation_failure"
    REGENERATION_PRECONDITION = "regeneration_precondition"
    TAILORING_FAILURE = "tailoring_failure"
    RETRIEVAL_TIMEOUT = "retrieval_timeout"
    PERSISTENCE_FAILURE = "persistence_failure"
    VERSION_NOT_FOUND = "version_not_found"
    BUSY = "busy"
    INVALID_INPUT = "invalid_input"
    PROMPT_NOT_FOUND = "prompt_not_found"


class PromptEngineError(Exception):
    """Base error raised inside the engine; operation boundaries turn it into a result."""

    kind: ErrorKind = ErrorKind.INVALID_INPUT

    def __init__(self, message: str, kind: ErrorKind | None = None) -> None:
        super().__init__(message)
        if kind is not None:
            self.kind = kind


class GenerationFailure(PromptEngineError):
    kind = ErrorKind.GENERATION_FAILURE


class RegenerationPreconditionError(PromptEngineError):
    kind = ErrorKind.REGENERATION_PRECONDITION


class TailoringFailure(PromptEngineError):
    kind = ErrorKind.TAILORING_FAILURE


class RetrievalTimeout(PromptEngineError):
    kind = ErrorKind.RETRIEVAL_TIMEOUT


class VersionNotFound(PromptEngineError):
    kind = ErrorKind.VERSION_NOT_FOUND


class SessionBusy(PromptEngineError):
    kind = ErrorKind.BUSY


class PromptNotFound(PromptEngineError):
    kind = ErrorKind.PROMPT_NOT_FOUND
