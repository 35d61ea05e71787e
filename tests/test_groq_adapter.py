"""Tests for the Groq streaming adapter."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from conftest import FakeStreamClient, FakeStreamResponse, sse
from toolchat.credentials import CredentialStore
from toolchat.errors import AuthenticationFailed, ProviderError, RateLimited
from toolchat.llm.base import TOOL_DATA_PREFIX
from toolchat.llm.groq import GroqAdapter
from toolchat.models import (
    CallRequests,
    Done,
    Role,
    SamplingParams,
    TextDelta,
    ToolCallResult,
    ToolCategory,
    ToolDefinition,
)

_CLIENT_PATH = "toolchat.llm.base.httpx.AsyncClient"

CALCULATOR = ToolDefinition(
    id="calculator",
    function_name="calculate",
    display_name="Calculator",
    description="Evaluate arithmetic.",
    category=ToolCategory.UTILITY,
    requires_credential=False,
    parameter_schema={
        "type": "object",
        "properties": {"expression": {"type": "string"}},
        "required": ["expression"],
    },
)


def _content(text: str, finish_reason: str | None = None) -> dict:
    return {"choices": [{"delta": {"content": text}, "finish_reason": finish_reason}]}


def _tool_fragment(index: int, arguments: str, call_id: str | None = None, name: str | None = None) -> dict:
    fragment: dict = {"index": index, "function": {"arguments": arguments}}
    if call_id:
        fragment["id"] = call_id
    if name:
        fragment["function"]["name"] = name
    return {"choices": [{"delta": {"tool_calls": [fragment]}, "finish_reason": None}]}


def _adapter(credentials, **kwargs) -> GroqAdapter:
    return GroqAdapter(credentials, model="llama-3.3-70b-versatile", retry_base_seconds=0, **kwargs)


async def _drain(handle) -> list:
    events = []
    while True:
        event = await handle.stream_next()
        events.append(event)
        if not isinstance(event, TextDelta):
            return events


@pytest.mark.asyncio
async def test_streams_text_then_done(credentials):
    client = FakeStreamClient([sse(_content("Hel"), _content("lo"), _content("", "stop"), done=True)])
    handle = await _adapter(credentials).begin_turn(
        [(Role.USER, "hi")], "be brief", SamplingParams(temperature=0.2, top_p=0.5, max_output_tokens=64), [CALCULATOR]
    )

    with patch(_CLIENT_PATH, return_value=client):
        events = await _drain(handle)

    assert events == [TextDelta("Hel"), TextDelta("lo"), Done("stop")]
    request = client.requests[0]
    assert request["url"].endswith("/chat/completions")
    assert request["headers"]["Authorization"] == "Bearer groq-key"
    payload = request["json"]
    assert payload["stream"] is True
    assert payload["temperature"] == 0.2
    assert payload["top_p"] == 0.5
    assert payload["max_tokens"] == 64
    assert payload["messages"][0] == {"role": "system", "content": "be brief"}
    assert payload["messages"][1] == {"role": "user", "content": "hi"}
    assert payload["tools"][0]["function"]["name"] == "calculate"
    assert payload["tool_choice"] == "auto"


@pytest.mark.asyncio
async def test_accumulates_tool_call_fragments_and_resumes(credentials):
    first = sse(
        _content("Let me check. "),
        _tool_fragment(0, '{"expr', call_id="call_1", name="calculate"),
        _tool_fragment(0, 'ession": "2+2"}'),
        {"choices": [{"delta": {}, "finish_reason": "tool_calls"}]},
        done=True,
    )
    second = sse(_content("It is 4."), _content("", "stop"), done=True)
    client = FakeStreamClient([first, second])
    handle = await _adapter(credentials).begin_turn([(Role.USER, "2+2?")], "sys", SamplingParams(), [CALCULATOR])

    with patch(_CLIENT_PATH, return_value=client):
        events = await _drain(handle)
        assert events[0] == TextDelta("Let me check. ")
        calls = events[-1]
        assert isinstance(calls, CallRequests)
        (request,) = calls.requests
        assert (request.call_id, request.tool_name, request.arguments) == ("call_1", "calculate", {"expression": "2+2"})
        assert request.argument_error is None

        await handle.submit_tool_results(
            [ToolCallResult("call_1", "calculate", {"success": True, "result": 4, "formatted": "4"})]
        )
        events = await _drain(handle)

    assert events == [TextDelta("It is 4."), Done("stop")]
    messages = client.requests[1]["json"]["messages"]
    assistant, tool = messages[-2], messages[-1]
    assert assistant["role"] == "assistant"
    assert assistant["content"] == "Let me check. "
    assert assistant["tool_calls"][0]["id"] == "call_1"
    assert assistant["tool_calls"][0]["function"]["arguments"] == '{"expression": "2+2"}'
    assert tool["role"] == "tool"
    assert tool["tool_call_id"] == "call_1"
    assert tool["content"].startswith(TOOL_DATA_PREFIX)
    assert '"formatted": "4"' in tool["content"]


@pytest.mark.asyncio
async def test_multiple_calls_keep_index_order_and_mint_missing_ids(credentials):
    client = FakeStreamClient(
        [
            sse(
                _tool_fragment(1, '{"location": "Paris"}', name="get_weather"),
                _tool_fragment(0, '{"expression": "2+2"}', call_id="call_a", name="calculate"),
                done=True,
            )
        ]
    )
    handle = await _adapter(credentials).begin_turn([(Role.USER, "q")], "sys", SamplingParams(), [CALCULATOR])

    with patch(_CLIENT_PATH, return_value=client):
        event = await handle.stream_next()

    assert [r.tool_name for r in event.requests] == ["calculate", "get_weather"]
    assert event.requests[0].call_id == "call_a"
    assert event.requests[1].call_id.startswith("call_")


@pytest.mark.asyncio
async def test_malformed_arguments_are_flagged_not_raised(credentials):
    client = FakeStreamClient([sse(_tool_fragment(0, "{not json", call_id="call_1", name="calculate"), done=True)])
    handle = await _adapter(credentials).begin_turn([(Role.USER, "q")], "sys", SamplingParams(), [CALCULATOR])

    with patch(_CLIENT_PATH, return_value=client):
        event = await handle.stream_next()

    (request,) = event.requests
    assert request.arguments == {}
    assert "not valid JSON" in request.argument_error


@pytest.mark.asyncio
async def test_results_must_match_pending_requests(credentials):
    client = FakeStreamClient([sse(_tool_fragment(0, "{}", call_id="call_1", name="calculate"), done=True)])
    handle = await _adapter(credentials).begin_turn([(Role.USER, "q")], "sys", SamplingParams(), [CALCULATOR])

    with patch(_CLIENT_PATH, return_value=client):
        await handle.stream_next()
        with pytest.raises(RuntimeError):
            await handle.stream_next()
        with pytest.raises(ValueError):
            await handle.submit_tool_results([ToolCallResult("other", "calculate", {"success": True})])


@pytest.mark.asyncio
async def test_retries_transient_failure_before_output(credentials):
    client = FakeStreamClient(
        [
            FakeStreamResponse([], status_code=503, body=b'{"error": {"message": "overloaded"}}'),
            sse(_content("ok", "stop"), done=True),
        ]
    )
    handle = await _adapter(credentials, max_retries=1).begin_turn([(Role.USER, "q")], "sys", SamplingParams(), [])

    with patch(_CLIENT_PATH, return_value=client):
        events = await _drain(handle)

    assert events == [TextDelta("ok"), Done("stop")]
    assert len(client.requests) == 2
    assert "tools" not in client.requests[0]["json"]


@pytest.mark.asyncio
async def test_gives_up_after_max_retries(credentials):
    client = FakeStreamClient([FakeStreamResponse([], status_code=500, body=b"boom")] * 3)
    handle = await _adapter(credentials, max_retries=2).begin_turn([(Role.USER, "q")], "sys", SamplingParams(), [])

    with patch(_CLIENT_PATH, return_value=client):
        with pytest.raises(ProviderError) as excinfo:
            await handle.stream_next()

    assert excinfo.value.status_code == 500
    assert len(client.requests) == 3


@pytest.mark.asyncio
async def test_authentication_failure_is_not_retried(credentials):
    client = FakeStreamClient([FakeStreamResponse([], status_code=401, body=b'{"error": {"message": "bad key"}}')])
    handle = await _adapter(credentials, max_retries=3).begin_turn([(Role.USER, "q")], "sys", SamplingParams(), [])

    with patch(_CLIENT_PATH, return_value=client):
        with pytest.raises(AuthenticationFailed, match="bad key"):
            await handle.stream_next()

    assert len(client.requests) == 1


@pytest.mark.asyncio
async def test_rate_limit_carries_retry_after(credentials):
    client = FakeStreamClient(
        [FakeStreamResponse([], status_code=429, body=b"slow down", headers={"retry-after": "7"})]
    )
    handle = await _adapter(credentials, max_retries=0).begin_turn([(Role.USER, "q")], "sys", SamplingParams(), [])

    with patch(_CLIENT_PATH, return_value=client):
        with pytest.raises(RateLimited) as excinfo:
            await handle.stream_next()

    assert excinfo.value.retry_after == 7.0
    assert excinfo.value.retryable


@pytest.mark.asyncio
async def test_missing_key_fails_before_any_request():
    adapter = _adapter(CredentialStore(None, None, {}))

    with pytest.raises(AuthenticationFailed):
        await adapter.begin_turn([(Role.USER, "q")], "sys", SamplingParams(), [])


@pytest.mark.asyncio
async def test_cancel_stops_consuming_output(credentials):
    client = FakeStreamClient([sse(_content("one "), _content("two "), _content("three", "stop"), done=True)])
    handle = await _adapter(credentials).begin_turn([(Role.USER, "q")], "sys", SamplingParams(), [])

    with patch(_CLIENT_PATH, return_value=client):
        first = await handle.stream_next()
        await handle.cancel()
        second = await handle.stream_next()

    assert first == TextDelta("one ")
    assert second == Done("cancelled")
    assert handle.cancelled


@pytest.mark.asyncio
async def test_tool_role_history_is_sent_as_user(credentials):
    handle = await _adapter(credentials).begin_turn(
        [(Role.USER, "a"), (Role.ASSISTANT, "b"), (Role.TOOL, "c")], "sys", SamplingParams(), []
    )

    assert [m["role"] for m in handle.messages] == ["system", "user", "assistant", "user"]
