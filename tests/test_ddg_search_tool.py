"""Tests for DdgSearchTool."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from toolchat.tools.ddg_search_tool import DdgSearchTool
from toolchat.tools.web_search_tool import TavilySearchTool

# Patch path must match the import in the module under test
_DDGS_PATH = "toolchat.tools.ddg_search_tool.DDGS"


def _ddg_results(*items: tuple[str, str, str]) -> list[dict]:
    return [{"title": t, "href": h, "body": b} for t, h, b in items]


@pytest.mark.asyncio
async def test_run_returns_results_in_search_shape():
    results = _ddg_results(
        ("Result One", "https://one.com", "First body text"),
        ("Result Two", "https://two.com", "Second body text"),
    )
    mock_ddgs = MagicMock()
    mock_ddgs.text = MagicMock(return_value=results)

    with patch(_DDGS_PATH, return_value=mock_ddgs):
        result = await DdgSearchTool().run(query="test query")

    assert result["success"] is True
    assert result["query"] == "test query"
    assert result["results"] == [
        {"title": "Result One", "url": "https://one.com", "content": "First body text", "score": None},
        {"title": "Result Two", "url": "https://two.com", "content": "Second body text", "score": None},
    ]
    mock_ddgs.text.assert_called_once_with("test query", max_results=5, backend="duckduckgo")


@pytest.mark.asyncio
async def test_advanced_depth_fetches_more_results():
    mock_ddgs = MagicMock()
    mock_ddgs.text = MagicMock(return_value=[])

    with patch(_DDGS_PATH, return_value=mock_ddgs):
        result = await DdgSearchTool().run(query="deep", search_depth="advanced")

    assert result["results"] == []
    assert mock_ddgs.text.call_args.kwargs["max_results"] == 10


def test_matches_tavily_declaration_without_credential():
    ddg = DdgSearchTool().definition()

    assert ddg.function_name == "web_search"
    assert ddg.parameter_schema == TavilySearchTool.parameters_schema
    assert ddg.requires_credential is False
