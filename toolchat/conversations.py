"""Conversations and their lifecycle."""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from toolchat.db import Database
from toolchat.history import TurnHistoryBuffer
from toolchat.models import Message, Role, new_id, utc_now

LOGGER = logging.getLogger(__name__)

DEFAULT_TITLE = "New Chat"
_TITLE_WORDS = 6
INTERRUPTED_ERROR = "Response was interrupted"


def derive_title(text: str) -> str:
    words = text.split()
    title = " ".join(words[:_TITLE_WORDS])
    return f"{title}..." if len(words) > _TITLE_WORDS else title


@dataclass(slots=True)
class Conversation:
    id: str = field(default_factory=new_id)
    title: str = DEFAULT_TITLE
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    tools_used: list[str] = field(default_factory=list)
    history: TurnHistoryBuffer = field(default_factory=TurnHistoryBuffer)
    title_is_custom: bool = False

    @property
    def message_count(self) -> int:
        return len(self.history)

    @property
    def messages(self) -> list[Message]:
        return self.history.messages

    def append(self, message: Message) -> Message:
        self.history.append(message)
        if not self.title_is_custom and message.role is Role.USER and self._is_first_user_message(message):
            self.title = derive_title(message.content)
        self.touch()
        return message

    def record_tool_use(self, tool_id: str) -> None:
        if tool_id not in self.tools_used:
            self.tools_used.append(tool_id)

    def touch(self) -> None:
        self.updated_at = max(utc_now(), self.created_at)

    def _is_first_user_message(self, message: Message) -> bool:
        return next((m for m in self.history if m.role is Role.USER), None) is message

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "tools_used": list(self.tools_used),
            "messages": [m.to_dict() for m in self.history],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Conversation:
        messages = [Message.from_dict(m) for m in data.get("messages", [])]
        for message in messages:
            # Saved mid-turn by a process that never finalized it.
            if message.metadata.is_streaming:
                message.metadata.is_streaming = False
                message.metadata.error = message.metadata.error or INTERRUPTED_ERROR
        return cls(
            id=data["id"],
            title=data["title"],
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
            tools_used=list(data.get("tools_used", [])),
            history=TurnHistoryBuffer(messages),
            title_is_custom=data["title"] != DEFAULT_TITLE,
        )


class ConversationManager:
    """In-memory conversation list mirrored to persistence when signed in."""

    def __init__(self, db: Database | None = None, user_id: str | None = None) -> None:
        self._db = db
        self._user_id = user_id
        self._conversations: dict[str, Conversation] = {}
        self.active_id: str | None = None

    @property
    def persistent(self) -> bool:
        return self._db is not None and bool(self._user_id)

    def load(self) -> list[Conversation]:
        """Replace the in-memory list with the user's saved conversations."""

        if not self.persistent:
            return []
        loaded = [Conversation.from_dict(row) for row in self._db.load_conversations(self._user_id)]
        self._conversations = {c.id: c for c in loaded}
        LOGGER.info("Loaded %d conversation(s) for %s", len(loaded), self._user_id)
        return loaded

    def create(self, title: str | None = None) -> Conversation:
        conversation = Conversation(title=title or DEFAULT_TITLE, title_is_custom=bool(title))
        self._conversations[conversation.id] = conversation
        self.active_id = conversation.id
        self.save(conversation)
        return conversation

    def get(self, conversation_id: str) -> Conversation | None:
        return self._conversations.get(conversation_id)

    def get_or_create(self, conversation_id: str | None) -> Conversation:
        if conversation_id is not None:
            conversation = self._conversations.get(conversation_id)
            if conversation is None:
                raise KeyError(f"Unknown conversation: {conversation_id}")
            return conversation
        if self.active_id and self.active_id in self._conversations:
            return self._conversations[self.active_id]
        return self.create()

    def list_conversations(self) -> list[Conversation]:
        return sorted(self._conversations.values(), key=lambda c: c.updated_at, reverse=True)

    def active(self) -> Conversation | None:
        return self._conversations.get(self.active_id) if self.active_id else None

    def set_active(self, conversation_id: str | None) -> None:
        if conversation_id is not None and conversation_id not in self._conversations:
            raise KeyError(f"Unknown conversation: {conversation_id}")
        self.active_id = conversation_id

    def rename(self, conversation_id: str, title: str) -> Conversation:
        conversation = self._require(conversation_id)
        conversation.title = title.strip() or DEFAULT_TITLE
        conversation.title_is_custom = True
        conversation.touch()
        self.save(conversation)
        return conversation

    def delete(self, conversation_id: str) -> None:
        self._require(conversation_id)
        del self._conversations[conversation_id]
        if self.active_id == conversation_id:
            remaining = self.list_conversations()
            self.active_id = remaining[0].id if remaining else None
        if self.persistent:
            try:
                self._db.delete_conversation(conversation_id)
            except sqlite3.Error:
                LOGGER.exception("Failed to delete conversation %s", conversation_id)

    def delete_message(self, conversation_id: str, message_id: str) -> bool:
        conversation = self._require(conversation_id)
        removed = conversation.history.remove(message_id)
        if removed:
            conversation.touch()
            self.save(conversation)
        return removed

    def save(self, conversation: Conversation) -> None:
        """Best-effort snapshot; failures are logged, never raised."""

        if not self.persistent:
            return
        try:
            self._db.save_conversation(self._user_id, conversation.to_dict())
        except (sqlite3.Error, TypeError, ValueError):
            LOGGER.exception("Failed to save conversation %s", conversation.id)

    def _require(self, conversation_id: str) -> Conversation:
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            raise KeyError(f"Unknown conversation: {conversation_id}")
        return conversation
