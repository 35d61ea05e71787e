"""Command dispatcher for @-prefixed messages.

Commands manage conversations, tools, models and keys without calling the
model. An unrecognised @command returns None, letting it fall through to the
LLM as an ordinary message.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Awaitable, Callable

from toolchat.config import AVAILABLE_MODELS, find_model
from toolchat.errors import UnknownTool

if TYPE_CHECKING:
    from toolchat.conversations import Conversation, ConversationManager
    from toolchat.credentials import CredentialStore
    from toolchat.llm.base import ProviderAdapter
    from toolchat.orchestrator import ConversationOrchestrator
    from toolchat.tools.registry import ToolRegistry

LOGGER = logging.getLogger(__name__)

CREDENTIAL_NAMES = ("gemini", "groq", "tavily", "weather")

HELP_TEXT = """Commands:
  @new [title]          start a new conversation
  @list                 list conversations
  @open <id>            switch to a conversation (id prefix is enough)
  @rename <title>       rename the current conversation
  @delete [id]          delete a conversation (default: current)
  @tools                list tools and whether they are enabled
  @enable <id>          offer a tool to the model
  @disable <id>         stop offering a tool
  @models               list available models
  @model <id>           switch model
  @key <name> [value]   store an API key, or remove it when no value is given
  @help                 show this help"""


def parse_command(text: str) -> tuple[str, list[str]] | None:
    """Split an @-prefixed message into (command, args).

    Returns:
        A (command, args) tuple where command is lowercased, or None if text
        is not a valid @command.
    """
    text = text.strip()
    if not text.startswith("@"):
        return None
    parts = text[1:].split()
    if not parts:
        return None
    return parts[0].lower(), parts[1:]


class CommandDispatcher:
    """Routes @-prefixed messages to local handlers.

    Returns None for unrecognised commands so the caller can fall through.
    """

    def __init__(
        self,
        conversations: ConversationManager,
        registry: ToolRegistry,
        credentials: CredentialStore,
        orchestrator: ConversationOrchestrator | None = None,
        adapter_factory: Callable[[str], ProviderAdapter] | None = None,
    ) -> None:
        self._conversations = conversations
        self._registry = registry
        self._credentials = credentials
        self._orchestrator = orchestrator
        self._adapter_factory = adapter_factory
        self.model_id: str | None = None

    async def dispatch(self, text: str) -> str | None:
        """Dispatch a message to a command handler.

        Returns:
            A reply string for recognised commands, or None for unknown ones.
        """
        parsed = parse_command(text)
        if parsed is None:
            return None
        command, args = parsed
        handler = self._handlers().get(command)
        if handler is None:
            return None
        # Keys must never reach the log.
        LOGGER.info("Command dispatch: command=%r args=%d", command, len(args))
        return await handler(args)

    def _handlers(self) -> dict[str, Callable[[list[str]], Awaitable[str]]]:
        return {
            "new": self._handle_new,
            "list": self._handle_list,
            "open": self._handle_open,
            "rename": self._handle_rename,
            "delete": self._handle_delete,
            "tools": self._handle_tools,
            "enable": self._handle_enable,
            "disable": self._handle_disable,
            "models": self._handle_models,
            "model": self._handle_model,
            "key": self._handle_key,
            "help": self._handle_help,
        }

    async def _handle_new(self, args: list[str]) -> str:
        conversation = self._conversations.create(" ".join(args) or None)
        return f"Started conversation {conversation.id[:8]}: {conversation.title}"

    async def _handle_list(self, args: list[str]) -> str:
        conversations = self._conversations.list_conversations()
        if not conversations:
            return "No conversations yet."
        lines = []
        for conversation in conversations:
            marker = "*" if conversation.id == self._conversations.active_id else " "
            lines.append(
                f"{marker} {conversation.id[:8]}  {conversation.title}  ({conversation.message_count} messages)"
            )
        return "\n".join(lines)

    async def _handle_open(self, args: list[str]) -> str:
        if not args:
            return "Usage: @open <id>"
        conversation = self._resolve(args[0])
        if conversation is None:
            return f"No conversation matches '{args[0]}'."
        self._conversations.set_active(conversation.id)
        return f"Switched to {conversation.id[:8]}: {conversation.title}"

    async def _handle_rename(self, args: list[str]) -> str:
        active = self._conversations.active()
        if active is None:
            return "No active conversation."
        if not args:
            return "Usage: @rename <title>"
        conversation = self._conversations.rename(active.id, " ".join(args))
        return f"Renamed to: {conversation.title}"

    async def _handle_delete(self, args: list[str]) -> str:
        conversation = self._resolve(args[0]) if args else self._conversations.active()
        if conversation is None:
            return "No matching conversation."
        if self._orchestrator is not None and self._orchestrator.is_busy(conversation.id):
            return "That conversation is still answering; cancel it first."
        self._conversations.delete(conversation.id)
        return f"Deleted conversation {conversation.id[:8]}."

    async def _handle_tools(self, args: list[str]) -> str:
        lines = []
        for definition in self._registry.list_tools():
            state = "on " if self._registry.is_enabled(definition.id) else "off"
            note = ""
            if definition.requires_credential and not self._tool_has_credential(definition.function_name):
                note = "  (needs API key)"
            lines.append(f"[{state}] {definition.id:<18} {definition.display_name}{note}")
        return "\n".join(lines) or "No tools registered."

    async def _handle_enable(self, args: list[str]) -> str:
        return self._toggle(args, True)

    async def _handle_disable(self, args: list[str]) -> str:
        return self._toggle(args, False)

    def _toggle(self, args: list[str], enabled: bool) -> str:
        verb = "enable" if enabled else "disable"
        if not args:
            return f"Usage: @{verb} <tool id>"
        try:
            self._registry.set_enabled(args[0], enabled)
        except UnknownTool:
            return f"Unknown tool '{args[0]}'. Try @tools."
        return f"{args[0]} {verb}d."

    async def _handle_models(self, args: list[str]) -> str:
        lines = []
        for model in AVAILABLE_MODELS:
            marker = "*" if model.id == self.model_id else " "
            lines.append(f"{marker} {model.id:<26} {model.name} - {model.description}")
        return "\n".join(lines)

    async def _handle_model(self, args: list[str]) -> str:
        if not args:
            return "Usage: @model <id>"
        info = find_model(args[0])
        if info is None:
            return f"Unknown model '{args[0]}'. Try @models."
        if self._adapter_factory is None or self._orchestrator is None:
            return "Model switching is not available."
        self._orchestrator.use_adapter(self._adapter_factory(info.id))
        self.model_id = info.id
        return f"Now using {info.name}."

    async def _handle_key(self, args: list[str]) -> str:
        if len(args) not in (1, 2) or args[0].lower() not in CREDENTIAL_NAMES:
            return f"Usage: @key <name> [value] (name: {', '.join(CREDENTIAL_NAMES)})"
        name = args[0].lower()
        if len(args) == 1:
            self._credentials.remove(name)
            return f"{name} key removed."
        self._credentials.set(name, args[1])
        return f"{name} key saved."

    async def _handle_help(self, args: list[str]) -> str:
        return HELP_TEXT

    def _resolve(self, prefix: str) -> Conversation | None:
        exact = self._conversations.get(prefix)
        if exact is not None:
            return exact
        matches = [c for c in self._conversations.list_conversations() if c.id.startswith(prefix)]
        return matches[0] if len(matches) == 1 else None

    def _tool_has_credential(self, tool_name: str) -> bool:
        return self._registry.credential_available(tool_name)
