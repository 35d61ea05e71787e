"""Core domain models used across layers."""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class ToolCategory(str, Enum):
    SEARCH = "search"
    ANALYSIS = "analysis"
    UTILITY = "utility"


def new_id() -> str:
    return uuid.uuid4().hex


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class Source:
    """Citation attached to an assistant message."""

    url: str
    title: str
    snippet: str = ""
    score: float | None = None


@dataclass(slots=True)
class MessageMetadata:
    tool_name: str | None = None
    tool_results: list[dict[str, Any]] = field(default_factory=list)
    sources: list[Source] = field(default_factory=list)
    thinking_time_ms: int | None = None
    is_streaming: bool = False
    error: str | None = None
    finish_reason: str | None = None


@dataclass(slots=True)
class Message:
    """One entry of a conversation. Immutable once ``is_streaming`` is cleared."""

    role: Role
    content: str
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utc_now)
    metadata: MessageMetadata = field(default_factory=MessageMetadata)

    @property
    def is_streaming(self) -> bool:
        return self.metadata.is_streaming

    def snapshot(self) -> Message:
        """Return a detached copy safe to hand to readers."""

        metadata = replace(
            self.metadata,
            tool_results=[dict(r) for r in self.metadata.tool_results],
            sources=list(self.metadata.sources),
        )
        return replace(self, metadata=metadata)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["role"] = self.role.value
        data["created_at"] = self.created_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Message:
        metadata = dict(data.get("metadata") or {})
        metadata["sources"] = [Source(**s) for s in metadata.get("sources", [])]
        return cls(
            id=data["id"],
            role=Role(data["role"]),
            content=data.get("content", ""),
            created_at=datetime.fromisoformat(data["created_at"]),
            metadata=MessageMetadata(**metadata),
        )


@dataclass(slots=True, frozen=True)
class ToolDefinition:
    """Static catalog entry describing a tool offered to the model."""

    id: str
    function_name: str
    display_name: str
    description: str
    category: ToolCategory
    requires_credential: bool
    parameter_schema: dict[str, Any]


@dataclass(slots=True)
class ToolCallRequest:
    """A model-initiated request to run a tool.

    ``argument_error`` is set when the provider delivered arguments that could
    not be decoded; such a request is answered with a synthetic failure.
    """

    call_id: str
    tool_name: str
    arguments: dict[str, Any] = field(default_factory=dict)
    argument_error: str | None = None


@dataclass(slots=True)
class ToolCallResult:
    call_id: str
    tool_name: str
    payload: dict[str, Any]

    @property
    def succeeded(self) -> bool:
        return bool(self.payload.get("success", False))

    @property
    def error_reason(self) -> str | None:
        if self.succeeded:
            return None
        return str(self.payload.get("error") or "Tool failed")


@dataclass(slots=True, frozen=True)
class SamplingParams:
    temperature: float = 0.7
    top_p: float = 0.95
    max_output_tokens: int = 8192


@dataclass(slots=True, frozen=True)
class TextDelta:
    text: str


@dataclass(slots=True, frozen=True)
class CallRequests:
    requests: tuple[ToolCallRequest, ...]


@dataclass(slots=True, frozen=True)
class Done:
    finish_reason: str


StreamEvent = TextDelta | CallRequests | Done


@dataclass(slots=True, frozen=True)
class MessageUpdated:
    conversation_id: str
    message: Message


@dataclass(slots=True, frozen=True)
class ToolStarted:
    conversation_id: str
    tool_name: str
    arguments: dict[str, Any]


@dataclass(slots=True, frozen=True)
class TurnFailed:
    conversation_id: str
    error: str


TurnEvent = MessageUpdated | ToolStarted | TurnFailed
