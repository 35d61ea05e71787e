"""Shared fakes for streaming HTTP and scripted providers."""

from __future__ import annotations

import copy
import json
from contextlib import asynccontextmanager
from typing import Any

import httpx
import pytest

from toolchat.credentials import CredentialStore
from toolchat.llm.base import ProviderAdapter, TurnHandle


class FakeStreamResponse:
    def __init__(
        self,
        lines: list[str],
        status_code: int = 200,
        body: bytes = b"",
        headers: dict | None = None,
        fail_with: Exception | None = None,
    ):
        self.status_code = status_code
        self.headers = httpx.Headers(headers or {})
        self._lines = lines
        self._body = body
        self._fail_with = fail_with

    async def aread(self) -> bytes:
        return self._body

    async def aiter_lines(self):
        for line in self._lines:
            yield line
        if self._fail_with is not None:
            raise self._fail_with


class FakeStreamClient:
    """Stands in for httpx.AsyncClient; serves one queued response per request."""

    def __init__(self, responses: list[Any]):
        self._responses = list(responses)
        self.requests: list[dict[str, Any]] = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    @asynccontextmanager
    async def stream(self, method, url, json=None, headers=None):  # noqa: A002
        self.requests.append(
            {"method": method, "url": url, "json": copy.deepcopy(json), "headers": dict(headers or {})}
        )
        response = self._responses.pop(0)
        if isinstance(response, Exception):
            raise response
        yield response


def sse(*chunks: dict, done: bool = False) -> FakeStreamResponse:
    lines = []
    for chunk in chunks:
        lines.extend([f"data: {json.dumps(chunk)}", ""])
    if done:
        lines.append("data: [DONE]")
    return FakeStreamResponse(lines)


class ScriptedHandle(TurnHandle):
    """Replays one scripted list of events (or an exception) per round.

    The script is shared with the adapter, so later turns continue where
    earlier ones stopped.
    """

    provider_name = "scripted"

    def __init__(self, rounds: list[list[Any]], max_retries: int = 0) -> None:
        super().__init__(max_retries=max_retries, retry_base_seconds=0)
        self._script = rounds
        self.submitted: list[list[Any]] = []

    async def _open_round(self):
        for event in self._script.pop(0):
            if isinstance(event, BaseException):
                raise event
            yield event

    def _record_results(self, requests, results) -> None:
        self.submitted.append(list(results))


class ScriptedAdapter(ProviderAdapter):
    name = "scripted"

    def __init__(self, *rounds: list[Any]) -> None:
        self._rounds = list(rounds)
        self.calls: list[dict[str, Any]] = []
        self.handle: ScriptedHandle | None = None

    async def begin_turn(self, history, system_prompt, sampling, tools):
        self.calls.append(
            {
                "history": list(history),
                "system_prompt": system_prompt,
                "tools": [t.function_name for t in tools],
            }
        )
        self.handle = ScriptedHandle(self._rounds)
        return self.handle


@pytest.fixture
def credentials():
    return CredentialStore(None, None, {"gemini": "gemini-key", "groq": "groq-key"})
