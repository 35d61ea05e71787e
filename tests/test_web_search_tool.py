"""Tests for TavilySearchTool."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from toolchat.credentials import CredentialStore
from toolchat.tools.web_search_tool import MAX_RESULTS, SNIPPET_CHARS, TavilySearchTool


def _mock_response(data: dict, status_code: int = 200) -> MagicMock:
    resp = MagicMock()
    resp.status_code = status_code
    resp.json.return_value = data
    return resp


def _mock_client(response: MagicMock) -> AsyncMock:
    mock_client = AsyncMock()
    mock_client.__aenter__ = AsyncMock(return_value=mock_client)
    mock_client.__aexit__ = AsyncMock(return_value=False)
    mock_client.post = AsyncMock(return_value=response)
    return mock_client


def _tool() -> TavilySearchTool:
    return TavilySearchTool(CredentialStore(None, None, {"tavily": "tvly-key"}))


@pytest.mark.asyncio
async def test_run_returns_structured_results():
    payload = {
        "query": "python async",
        "answer": "Use asyncio.",
        "results": [
            {"title": "Result One", "url": "https://one.com", "content": "First snippet", "score": 0.91},
            {"title": "Result Two", "url": "https://two.com", "content": "x" * 2000, "score": 0.5},
        ],
        "response_time": 0.42,
    }
    mock_client = _mock_client(_mock_response(payload))

    with patch("toolchat.tools.web_search_tool.httpx.AsyncClient", return_value=mock_client):
        result = await _tool().run(query="python async", search_depth="advanced")

    assert result["success"] is True
    assert result["answer"] == "Use asyncio."
    assert result["results"][0] == {
        "title": "Result One",
        "url": "https://one.com",
        "content": "First snippet",
        "score": 0.91,
    }
    assert len(result["results"][1]["content"]) == SNIPPET_CHARS

    body = mock_client.post.call_args.kwargs["json"]
    assert body["api_key"] == "tvly-key"
    assert body["search_depth"] == "advanced"
    assert body["max_results"] == MAX_RESULTS


@pytest.mark.asyncio
async def test_run_defaults_to_basic_depth():
    mock_client = _mock_client(_mock_response({"results": []}))

    with patch("toolchat.tools.web_search_tool.httpx.AsyncClient", return_value=mock_client):
        result = await _tool().run(query="  nothing  ")

    assert result["results"] == []
    assert result["query"] == "nothing"
    assert mock_client.post.call_args.kwargs["json"]["search_depth"] == "basic"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("status_code", "message"),
    [
        (401, "Invalid Tavily API key."),
        (429, "Tavily rate limit exceeded. Wait before searching again."),
        (500, "Search failed (HTTP 500)."),
    ],
)
async def test_run_maps_http_errors(status_code, message):
    mock_client = _mock_client(_mock_response({}, status_code=status_code))

    with patch("toolchat.tools.web_search_tool.httpx.AsyncClient", return_value=mock_client):
        result = await _tool().run(query="anything")

    assert result == {"success": False, "error": message}


def test_tool_requires_tavily_credential():
    definition = _tool().definition()

    assert definition.id == "web_search"
    assert definition.requires_credential is True
    assert definition.parameter_schema["required"] == ["query"]
