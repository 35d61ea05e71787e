"""Error taxonomy shared by the orchestrator, adapters and tools."""

from __future__ import annotations


class ChatError(Exception):
    """Base class for every error the chat core raises or records."""

    retryable: bool = False


class InvalidSubmission(ChatError):
    """User input rejected before any state change."""


class TurnInProgress(ChatError):
    """A turn is already in flight for the conversation."""

    def __init__(self, conversation_id: str) -> None:
        super().__init__(f"A turn is already running for conversation {conversation_id}")
        self.conversation_id = conversation_id


class UnknownTool(ChatError):
    """Requested tool is not registered or not offered this turn."""

    def __init__(self, tool_name: str) -> None:
        super().__init__(f"Unknown tool: {tool_name}")
        self.tool_name = tool_name


class ToolExecutionFailure(ChatError):
    """A tool handler raised while running."""


class MalformedToolArguments(ChatError):
    """Model-produced arguments failed to parse or validate."""


class ProviderError(ChatError):
    """Backend failure; 5xx and transport errors are transient."""

    retryable = True

    def __init__(self, message: str, provider: str = "", status_code: int | None = None, retryable: bool = True) -> None:
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code
        self.retryable = retryable


class AuthenticationFailed(ProviderError):
    """Bad or missing provider credential. Never retried."""

    def __init__(self, message: str, provider: str = "", status_code: int | None = None) -> None:
        super().__init__(message, provider=provider, status_code=status_code, retryable=False)


class RateLimited(ProviderError):
    """Provider returned 429."""

    def __init__(self, message: str, provider: str = "", retry_after: float | None = None) -> None:
        super().__init__(message, provider=provider, status_code=429, retryable=True)
        self.retry_after = retry_after


class ToolLoopExceeded(ChatError):
    """The model kept requesting tools past the round cap."""

    def __init__(self, max_rounds: int) -> None:
        super().__init__(f"Tool call loop exceeded {max_rounds} rounds")
        self.max_rounds = max_rounds


class CancellationRequested(ChatError):
    """Turn was stopped by the user. Not shown as an error."""
