"""Application entrypoint: an interactive terminal chat."""

from __future__ import annotations

import asyncio
import logging
import signal
import sys

from toolchat.commands import CommandDispatcher
from toolchat.config import Settings, load_settings
from toolchat.conversations import ConversationManager
from toolchat.credentials import CredentialStore
from toolchat.db import Database
from toolchat.errors import ChatError
from toolchat.llm.factory import build_adapter
from toolchat.models import MessageUpdated, ToolStarted, TurnEvent, TurnFailed
from toolchat.orchestrator import ConversationOrchestrator, TurnStatus
from toolchat.prompts import resolve_system_prompt
from toolchat.tools.calculator_tool import CalculatorTool
from toolchat.tools.ddg_search_tool import DdgSearchTool
from toolchat.tools.image_tool import ImageGenerationTool
from toolchat.tools.registry import ToolRegistry
from toolchat.tools.stock_tool import StockPriceTool
from toolchat.tools.time_tool import GetCurrentTimeTool
from toolchat.tools.weather_tool import WeatherTool
from toolchat.tools.web_search_tool import TavilySearchTool

LOGGER = logging.getLogger(__name__)

_QUIT_COMMANDS = {"@quit", "@exit"}


class TerminalRenderer:
    """Prints streamed snapshots as they arrive, only the new suffix each time."""

    def __init__(self, out=None) -> None:
        self._out = out or sys.stdout
        self._printed: dict[str, int] = {}

    async def __call__(self, event: TurnEvent) -> None:
        if isinstance(event, MessageUpdated):
            message = event.message
            shown = self._printed.get(message.id, 0)
            if len(message.content) > shown:
                self._write(message.content[shown:])
                self._printed[message.id] = len(message.content)
            if not message.is_streaming:
                self._printed.pop(message.id, None)
                if message.metadata.sources:
                    self._write("\n\nSources:")
                    for index, source in enumerate(message.metadata.sources, start=1):
                        self._write(f"\n  {index}. {source.title} - {source.url}")
                self._write("\n")
        elif isinstance(event, ToolStarted):
            self._write(f"\n[using tool {event.tool_name}]\n")
        elif isinstance(event, TurnFailed):
            self._write(f"\n[error] {event.error}\n")

    def _write(self, text: str) -> None:
        self._out.write(text)
        self._out.flush()


def build_registry(settings: Settings, credentials: CredentialStore, db: Database) -> ToolRegistry:
    registry = ToolRegistry(credentials, db=db, user_id=settings.user_id)
    if settings.search_backend == "duckduckgo":
        registry.register(DdgSearchTool())
    else:
        registry.register(TavilySearchTool(credentials))
    registry.register(GetCurrentTimeTool())
    registry.register(CalculatorTool())
    registry.register(WeatherTool(credentials))
    registry.register(StockPriceTool())
    registry.register(ImageGenerationTool())
    registry.load_preferences()
    return registry


async def run() -> None:
    """Initialize app layers and run the prompt loop until EOF."""

    settings = load_settings()
    logging.basicConfig(level=settings.log_level.upper())

    db = Database(settings.database_path)
    db.initialize()

    credentials = CredentialStore(db, settings.user_id, settings.env_credentials())
    registry = build_registry(settings, credentials, db)
    conversations = ConversationManager(db, settings.user_id)
    conversations.load()

    model_id = settings.resolved_model_id()
    orchestrator = ConversationOrchestrator(
        conversations=conversations,
        registry=registry,
        adapter=build_adapter(settings, credentials, model_id),
        system_prompt=resolve_system_prompt(settings.system_prompt),
        sampling=settings.sampling(),
        max_tool_rounds=settings.max_tool_rounds,
        listener=TerminalRenderer(),
    )
    dispatcher = CommandDispatcher(
        conversations,
        registry,
        credentials,
        orchestrator=orchestrator,
        adapter_factory=lambda new_model: build_adapter(settings, credentials, new_model),
    )
    dispatcher.model_id = model_id

    loop = asyncio.get_running_loop()
    current: dict[str, str] = {}

    def on_interrupt() -> None:
        conversation_id = current.get("conversation_id")
        if conversation_id is None:
            print("\n(press Ctrl-D or type @quit to exit)", flush=True)
            return
        loop.create_task(orchestrator.cancel(conversation_id))

    loop.add_signal_handler(signal.SIGINT, on_interrupt)
    print(f"toolchat ({model_id}). Type @help for commands.")
    try:
        while True:
            try:
                text = await asyncio.to_thread(input, "\n> ")
            except EOFError:
                break
            if not text.strip():
                continue
            if text.strip().lower() in _QUIT_COMMANDS:
                break

            reply = await dispatcher.dispatch(text)
            if reply is not None:
                print(reply)
                continue

            conversation = conversations.get_or_create(None)
            current["conversation_id"] = conversation.id
            try:
                outcome = await orchestrator.submit(text, conversation.id)
            except ChatError as exc:
                print(f"[error] {exc}")
                continue
            finally:
                current.pop("conversation_id", None)
            if outcome.status is TurnStatus.CANCELLED:
                print("[stopped]")
    finally:
        loop.remove_signal_handler(signal.SIGINT)
        LOGGER.info("toolchat shutdown complete")


def main() -> None:
    """Synchronous wrapper for asyncio entrypoint."""

    asyncio.run(run())


if __name__ == "__main__":
    main()
