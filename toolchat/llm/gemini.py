"""Gemini implementation of ProviderAdapter."""

from __future__ import annotations

import logging
import uuid
from contextlib import aclosing
from typing import Any, AsyncIterator, Sequence

from toolchat.credentials import CredentialStore
from toolchat.errors import AuthenticationFailed
from toolchat.llm.base import TOOL_DATA_PREFIX, ProviderAdapter, TurnHandle, stream_json_events
from toolchat.models import (
    CallRequests,
    Done,
    Role,
    SamplingParams,
    StreamEvent,
    TextDelta,
    ToolCallRequest,
    ToolCallResult,
    ToolDefinition,
)

LOGGER = logging.getLogger(__name__)

_ROLE_MAP = {Role.USER: "user", Role.ASSISTANT: "model", Role.TOOL: "user"}


class GeminiTurnHandle(TurnHandle):
    """Streams ``streamGenerateContent``.

    Gemini delivers function calls as whole parts; they are held back until the
    segment's stream completes so text is never interleaved with a call batch.
    """

    provider_name = "gemini"

    def __init__(
        self,
        *,
        url: str,
        api_key: str,
        contents: list[dict[str, Any]],
        request_config: dict[str, Any],
        timeout: float,
        max_retries: int,
        retry_base_seconds: float,
    ) -> None:
        super().__init__(max_retries=max_retries, retry_base_seconds=retry_base_seconds)
        self._url = url
        self._api_key = api_key
        self.contents = contents
        self._request_config = request_config
        self._timeout = timeout
        self._segment_text = ""
        self._segment_call_parts: list[dict[str, Any]] = []

    async def _open_round(self) -> AsyncIterator[StreamEvent]:
        text_parts: list[str] = []
        call_parts: list[dict[str, Any]] = []
        finish_reason = "STOP"

        LOGGER.info("Gemini round %d: contents=%d", self.rounds, len(self.contents))
        async with aclosing(
            stream_json_events(
                "gemini",
                self._url,
                {"contents": self.contents, **self._request_config},
                {"x-goog-api-key": self._api_key, "Content-Type": "application/json"},
                self._timeout,
            )
        ) as chunks:
            async for chunk in chunks:
                block_reason = (chunk.get("promptFeedback") or {}).get("blockReason")
                if block_reason:
                    finish_reason = block_reason
                for candidate in (chunk.get("candidates") or [])[:1]:
                    for part in (candidate.get("content") or {}).get("parts") or []:
                        if part.get("thought"):
                            continue
                        if "functionCall" in part:
                            call_parts.append(part)
                        elif part.get("text"):
                            text_parts.append(part["text"])
                            yield TextDelta(part["text"])
                    if candidate.get("finishReason"):
                        finish_reason = candidate["finishReason"]

        self._segment_text = "".join(text_parts)
        if call_parts:
            self._segment_call_parts = call_parts
            LOGGER.info("Gemini requested %d tool call(s)", len(call_parts))
            yield CallRequests(tuple(_to_request(p["functionCall"]) for p in call_parts))
        else:
            yield Done(finish_reason)

    def _record_results(self, requests: Sequence[ToolCallRequest], results: Sequence[ToolCallResult]) -> None:
        model_parts: list[dict[str, Any]] = []
        if self._segment_text:
            model_parts.append({"text": self._segment_text})
        model_parts.extend(self._segment_call_parts)
        self.contents.append({"role": "model", "parts": model_parts})

        response_parts = []
        for request, result in zip(requests, results):
            function_response: dict[str, Any] = {
                "name": result.tool_name,
                "response": {"note": TOOL_DATA_PREFIX.strip(), "result": result.payload},
            }
            if not request.call_id.startswith("gemini_"):
                function_response["id"] = request.call_id
            response_parts.append({"functionResponse": function_response})
        self.contents.append({"role": "user", "parts": response_parts})
        self._segment_call_parts = []
        self._segment_text = ""


class GeminiAdapter(ProviderAdapter):
    """Provider adapter for the Gemini REST API."""

    name = "gemini"

    def __init__(
        self,
        credentials: CredentialStore,
        model: str,
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        timeout: float = 60.0,
        max_retries: int = 2,
        retry_base_seconds: float = 2.0,
    ) -> None:
        self._credentials = credentials
        self.model = model
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._max_retries = max_retries
        self._retry_base_seconds = retry_base_seconds

    async def begin_turn(
        self,
        history: Sequence[tuple[Role, str]],
        system_prompt: str,
        sampling: SamplingParams,
        tools: Sequence[ToolDefinition],
    ) -> GeminiTurnHandle:
        api_key = self._credentials.get("gemini")
        if not api_key:
            raise AuthenticationFailed("Gemini API key not configured", provider=self.name)

        request_config: dict[str, Any] = {
            "systemInstruction": {"parts": [{"text": system_prompt}]},
            "generationConfig": {
                "temperature": sampling.temperature,
                "topP": sampling.top_p,
                "maxOutputTokens": sampling.max_output_tokens,
            },
        }
        if tools:
            request_config["tools"] = [
                {
                    "functionDeclarations": [
                        {
                            "name": t.function_name,
                            "description": t.description,
                            "parameters": gemini_schema(t.parameter_schema),
                        }
                        for t in tools
                    ]
                }
            ]
        return GeminiTurnHandle(
            url=f"{self._base_url}/models/{self.model}:streamGenerateContent?alt=sse",
            api_key=api_key,
            contents=_merge_turns(history),
            request_config=request_config,
            timeout=self._timeout,
            max_retries=self._max_retries,
            retry_base_seconds=self._retry_base_seconds,
        )


def gemini_schema(schema: dict[str, Any]) -> dict[str, Any]:
    """Convert a JSON schema to Gemini's OpenAPI subset."""

    converted: dict[str, Any] = {}
    for key, value in schema.items():
        if key == "type":
            converted["type"] = str(value).upper()
        elif key == "properties":
            converted["properties"] = {name: gemini_schema(sub) for name, sub in value.items()}
        elif key == "items":
            converted["items"] = gemini_schema(value)
        elif key in ("description", "enum", "nullable") or (key == "required" and value):
            converted[key] = value
    if "enum" in converted:
        converted["format"] = "enum"
    return converted


def _merge_turns(history: Sequence[tuple[Role, str]]) -> list[dict[str, Any]]:
    # Gemini expects alternating roles; consecutive same-role entries are joined.
    contents: list[dict[str, Any]] = []
    for role, text in history:
        gemini_role = _ROLE_MAP[role]
        if contents and contents[-1]["role"] == gemini_role:
            contents[-1]["parts"].append({"text": text})
        else:
            contents.append({"role": gemini_role, "parts": [{"text": text}]})
    return contents


def _to_request(function_call: dict[str, Any]) -> ToolCallRequest:
    call_id = function_call.get("id") or f"gemini_{uuid.uuid4().hex[:24]}"
    name = function_call.get("name", "")
    args = function_call.get("args")
    if args is None:
        return ToolCallRequest(call_id, name, {})
    if not isinstance(args, dict):
        return ToolCallRequest(call_id, name, {}, argument_error="Arguments must be an object")
    return ToolCallRequest(call_id, name, dict(args))
