"""Registry for tool declaration, enablement and safe execution."""

from __future__ import annotations

import logging
import sqlite3
from typing import Any, Literal

from pydantic import ValidationError, create_model

from toolchat.credentials import CredentialStore
from toolchat.db import Database
from toolchat.errors import MalformedToolArguments, ToolExecutionFailure, UnknownTool
from toolchat.models import ToolDefinition
from toolchat.tools.base import Tool, failure

LOGGER = logging.getLogger(__name__)

CREDENTIAL_MISSING = "credential missing"


class ToolRegistry:
    """Explicit registry of tools.

    ``execute`` never raises: unknown tools, bad arguments, missing
    credentials and handler exceptions all come back as
    ``{"success": False, "error": reason}`` so the result can be handed to the
    model like any other.
    """

    def __init__(
        self,
        credentials: CredentialStore,
        db: Database | None = None,
        user_id: str | None = None,
    ) -> None:
        self._credentials = credentials
        self._db = db
        self._user_id = user_id
        self._tools: dict[str, Tool] = {}
        self._enabled: set[str] = set()

    def register(self, tool: Tool, enabled: bool = True) -> None:
        self._tools[tool.name] = tool
        if enabled:
            self._enabled.add(tool.id)

    def load_preferences(self) -> None:
        """Apply the user's saved enablement toggles."""

        if self._db is None or not self._user_id:
            return
        for tool_id, enabled in self._db.get_tool_preferences(self._user_id).items():
            if enabled:
                self._enabled.add(tool_id)
            else:
                self._enabled.discard(tool_id)

    def list_tools(self) -> list[ToolDefinition]:
        return [tool.definition() for tool in self._tools.values()]

    def get(self, tool_id: str) -> ToolDefinition | None:
        return next((d for d in self.list_tools() if d.id == tool_id), None)

    def is_enabled(self, tool_id: str) -> bool:
        return tool_id in self._enabled

    def set_enabled(self, tool_id: str, enabled: bool) -> None:
        if self.get(tool_id) is None:
            raise UnknownTool(tool_id)
        if enabled:
            self._enabled.add(tool_id)
        else:
            self._enabled.discard(tool_id)
        if self._db is not None and self._user_id:
            self._db.set_tool_enabled(self._user_id, tool_id, enabled)

    def enabled_definitions(self) -> list[ToolDefinition]:
        return [d for d in self.list_tools() if d.id in self._enabled]

    def credential_available(self, tool_name: str) -> bool:
        tool = self._tools.get(tool_name)
        if tool is None:
            return False
        if not tool.credential_name:
            return True
        try:
            return self._credentials.has(tool.credential_name)
        except sqlite3.Error:
            LOGGER.exception("Credential lookup failed for tool %r", tool_name)
            return False

    async def execute(
        self,
        tool_name: str,
        arguments: dict[str, Any],
    ) -> dict[str, Any]:
        tool = self._tools.get(tool_name)
        if tool is None:
            LOGGER.warning("Rejected call to unknown tool %r", tool_name)
            return failure(str(UnknownTool(tool_name)))

        if not self.credential_available(tool_name):
            LOGGER.info("Tool %r skipped: %s credential missing", tool_name, tool.credential_name)
            return failure(CREDENTIAL_MISSING)

        try:
            validated = _validate_json_schema(tool.parameters_schema, arguments)
        except MalformedToolArguments as exc:
            return failure(str(exc))

        try:
            result = await tool.run(**validated)
        except ToolExecutionFailure as exc:
            LOGGER.warning("Tool %r failed: %s", tool_name, exc)
            result = failure(str(exc))
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("Tool %r raised", tool_name)
            result = failure(f"{type(exc).__name__}: {exc}")

        self._log(tool_name, validated, result)
        return result

    def _log(self, tool_name: str, arguments: dict[str, Any], result: dict[str, Any]) -> None:
        if self._db is None:
            return
        try:
            self._db.log_tool_execution(
                self._user_id,
                tool_name,
                arguments,
                result,
                succeeded=bool(result.get("success")),
            )
        except sqlite3.Error:
            LOGGER.exception("Failed to log execution of tool %r", tool_name)


def _validate_json_schema(schema: dict[str, Any], payload: dict[str, Any]) -> dict[str, Any]:
    props = schema.get("properties", {})
    required = set(schema.get("required", []))
    fields: dict[str, tuple[Any, Any]] = {}
    for name, config in props.items():
        typ: Any = _python_type(config.get("type", "string"))
        if config.get("enum"):
            typ = Literal[tuple(config["enum"])]
        if name in required:
            fields[name] = (typ, ...)
        else:
            fields[name] = (typ | None, None)

    model = create_model("ToolInputModel", **fields)
    try:
        value = model(**payload)
    except ValidationError as exc:
        raise MalformedToolArguments(f"Malformed tool arguments: {exc}") from exc
    except TypeError as exc:
        raise MalformedToolArguments(f"Malformed tool arguments: {exc}") from exc
    return value.model_dump(exclude_none=True)


def _python_type(schema_type: str) -> type[Any]:
    mapping: dict[str, type[Any]] = {
        "string": str,
        "integer": int,
        "number": float,
        "boolean": bool,
        "object": dict,
        "array": list,
    }
    return mapping.get(schema_type, str)
