"""Groq implementation of ProviderAdapter (OpenAI-compatible chat completions)."""

from __future__ import annotations

import json
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

_ROLE_MAP = {Role.USER: "user", Role.ASSISTANT: "assistant", Role.TOOL: "user"}


class GroqTurnHandle(TurnHandle):
    """Streams chat completions.

    Tool-call fragments arrive interleaved with text and are keyed by index;
    they are accumulated and surfaced once the round's stream finishes.
    """

    provider_name = "groq"

    def __init__(
        self,
        *,
        url: str,
        api_key: str,
        model: str,
        messages: list[dict[str, Any]],
        sampling: SamplingParams,
        tools: list[dict[str, Any]],
        timeout: float,
        max_retries: int,
        retry_base_seconds: float,
    ) -> None:
        super().__init__(max_retries=max_retries, retry_base_seconds=retry_base_seconds)
        self._url = url
        self._api_key = api_key
        self._model = model
        self.messages = messages
        self._sampling = sampling
        self._tools = tools
        self._timeout = timeout
        self._segment_text = ""
        self._segment_calls: list[dict[str, Any]] = []

    def _payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self._model,
            "messages": self.messages,
            "temperature": self._sampling.temperature,
            "top_p": self._sampling.top_p,
            "max_tokens": self._sampling.max_output_tokens,
            "stream": True,
        }
        if self._tools:
            payload["tools"] = self._tools
            payload["tool_choice"] = "auto"
        return payload

    async def _open_round(self) -> AsyncIterator[StreamEvent]:
        accumulated: dict[int, dict[str, Any]] = {}
        text_parts: list[str] = []
        finish_reason = "stop"

        LOGGER.info("Groq round %d: model=%s messages=%d", self.rounds, self._model, len(self.messages))
        async with aclosing(
            stream_json_events(
                "groq",
                self._url,
                self._payload(),
                {"Authorization": f"Bearer {self._api_key}", "Content-Type": "application/json"},
                self._timeout,
            )
        ) as chunks:
            async for chunk in chunks:
                choices = chunk.get("choices") or []
                if not choices:
                    continue
                choice = choices[0]
                delta = choice.get("delta") or {}

                content = delta.get("content")
                if content:
                    text_parts.append(content)
                    yield TextDelta(content)

                for fragment in delta.get("tool_calls") or []:
                    index = fragment.get("index", 0)
                    call = accumulated.setdefault(index, {"id": "", "name": "", "arguments": ""})
                    if fragment.get("id"):
                        call["id"] = fragment["id"]
                    function = fragment.get("function") or {}
                    call["name"] += function.get("name") or ""
                    call["arguments"] += function.get("arguments") or ""

                if choice.get("finish_reason"):
                    finish_reason = choice["finish_reason"]

        self._segment_text = "".join(text_parts)
        if accumulated:
            self._segment_calls = [accumulated[i] for i in sorted(accumulated)]
            for call in self._segment_calls:
                call["id"] = call["id"] or f"call_{uuid.uuid4().hex[:24]}"
            LOGGER.info("Groq requested %d tool call(s)", len(self._segment_calls))
            yield CallRequests(tuple(_to_request(c) for c in self._segment_calls))
        else:
            yield Done(finish_reason)

    def _record_results(self, requests: Sequence[ToolCallRequest], results: Sequence[ToolCallResult]) -> None:
        self.messages.append(
            {
                "role": "assistant",
                "content": self._segment_text or None,
                "tool_calls": [
                    {
                        "id": call["id"],
                        "type": "function",
                        "function": {"name": call["name"], "arguments": call["arguments"] or "{}"},
                    }
                    for call in self._segment_calls
                ],
            }
        )
        for result in results:
            self.messages.append(
                {
                    "role": "tool",
                    "tool_call_id": result.call_id,
                    "name": result.tool_name,
                    "content": TOOL_DATA_PREFIX + json.dumps(result.payload, default=str),
                }
            )
        self._segment_calls = []
        self._segment_text = ""


class GroqAdapter(ProviderAdapter):
    """Provider adapter for Groq's OpenAI-compatible endpoint."""

    name = "groq"

    def __init__(
        self,
        credentials: CredentialStore,
        model: str,
        base_url: str = "https://api.groq.com/openai/v1",
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
    ) -> GroqTurnHandle:
        api_key = self._credentials.get("groq")
        if not api_key:
            raise AuthenticationFailed("Groq API key not configured", provider=self.name)

        messages: list[dict[str, Any]] = [{"role": "system", "content": system_prompt}]
        messages.extend({"role": _ROLE_MAP[role], "content": content} for role, content in history)
        return GroqTurnHandle(
            url=f"{self._base_url}/chat/completions",
            api_key=api_key,
            model=self.model,
            messages=messages,
            sampling=sampling,
            tools=[
                {
                    "type": "function",
                    "function": {
                        "name": t.function_name,
                        "description": t.description,
                        "parameters": t.parameter_schema,
                    },
                }
                for t in tools
            ],
            timeout=self._timeout,
            max_retries=self._max_retries,
            retry_base_seconds=self._retry_base_seconds,
        )


def _to_request(call: dict[str, Any]) -> ToolCallRequest:
    raw = call["arguments"] or "{}"
    try:
        arguments = json.loads(raw)
    except json.JSONDecodeError as exc:
        return ToolCallRequest(call["id"], call["name"], {}, argument_error=f"Arguments are not valid JSON: {exc}")
    if not isinstance(arguments, dict):
        return ToolCallRequest(call["id"], call["name"], {}, argument_error="Arguments must be a JSON object")
    return ToolCallRequest(call["id"], call["name"], arguments)
