"""Ordered, role-tagged message log of a single conversation."""

from __future__ import annotations

from typing import Any, Iterator

from toolchat.models import Message, Role

_METADATA_FIELDS = frozenset(
    {"tool_name", "tool_results", "sources", "thinking_time_ms", "error", "finish_reason"}
)


class TurnHistoryBuffer:
    """Append-ordered message log.

    ``update_in_place`` is the only way a message changes after it is
    appended, and only while the message is still streaming. Streaming content
    may grow but never be rewritten.
    """

    def __init__(self, messages: list[Message] | None = None) -> None:
        self._messages: list[Message] = list(messages or [])
        self._index: dict[str, Message] = {m.id: m for m in self._messages}

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(list(self._messages))

    @property
    def messages(self) -> list[Message]:
        return list(self._messages)

    def get(self, message_id: str) -> Message | None:
        return self._index.get(message_id)

    def append(self, message: Message) -> Message:
        if message.id in self._index:
            raise ValueError(f"Duplicate message id: {message.id}")
        self._messages.append(message)
        self._index[message.id] = message
        return message

    def append_delta(self, message_id: str, delta: str) -> Message:
        message = self._require_streaming(message_id)
        return self.update_in_place(message_id, content=message.content + delta)

    def update_in_place(self, message_id: str, **fields: Any) -> Message:
        """Apply ``content`` and metadata fields to a streaming message."""

        message = self._require_streaming(message_id)
        if "content" in fields:
            content = fields.pop("content")
            if not content.startswith(message.content):
                raise ValueError("Streaming content is append-only")
            message.content = content
        unknown = set(fields) - _METADATA_FIELDS
        if unknown:
            raise ValueError(f"Unknown message fields: {sorted(unknown)}")
        for name, value in fields.items():
            setattr(message.metadata, name, value)
        return message

    def finalize(self, message_id: str, **fields: Any) -> Message:
        """Apply the last update and clear the streaming flag."""

        message = self.update_in_place(message_id, **fields)
        message.metadata.is_streaming = False
        return message

    def remove(self, message_id: str) -> bool:
        message = self._index.pop(message_id, None)
        if message is None:
            return False
        self._messages.remove(message)
        return True

    def as_provider_context(self) -> list[tuple[Role, str]]:
        """Finalized messages with content, oldest first."""

        return [
            (m.role, m.content)
            for m in self._messages
            if not m.is_streaming and m.content.strip()
        ]

    def _require_streaming(self, message_id: str) -> Message:
        message = self._index.get(message_id)
        if message is None:
            raise KeyError(f"Unknown message id: {message_id}")
        if not message.is_streaming:
            raise ValueError(f"Message {message_id} is finalized")
        return message
