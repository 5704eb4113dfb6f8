from __future__ import annotations
from typing import Optional


class AgentError(Exception):
    """Base class for errors raised by the agent core."""


class ConfigError(AgentError):
    """Invalid or incomplete configuration. Fatal at startup."""


class ContextError(AgentError):
    """A turn could not be folded into the conversation context."""


class PhaseError(AgentError):
    """Phase state machine used before initialization."""


class PlannerDeadlockError(AgentError):
    """No executable group could be formed while actions remain."""

    def __init__(self, remaining: list[str]):
        self.remaining = remaining
        super().__init__(f"Unable to schedule actions, dependency deadlock: {', '.join(remaining)}")


class StreamCancelled(AgentError):
    """The user cancelled an in-flight model stream."""


class LLMError(AgentError):
    """Transport or stream failure, tagged with one of the stream error types."""

    def __init__(self, error_type: str, message: str = "", details: Optional[dict] = None):
        self.error_type = error_type
        self.details = details or {}
        super().__init__(message or error_type)

    @property
    def is_context_overflow(self) -> bool:
        return self.error_type == "CONTEXT_LENGTH_EXCEEDED"
