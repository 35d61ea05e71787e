"""DuckDuckGo search tool."""

from __future__ import annotations

import asyncio
from typing import Any

from ddgs import DDGS

from toolchat.models import ToolCategory
from toolchat.tools.base import Tool
from toolchat.tools.web_search_tool import MAX_RESULTS, SEARCH_PARAMETERS, SNIPPET_CHARS


class DdgSearchTool(Tool):
    """Search the web using DuckDuckGo (no API key required).

    Drop-in replacement for the Tavily backend: same id, function name and
    result shape, so the model and the UI cannot tell them apart.
    """

    id = "web_search"
    name = "web_search"
    display_name = "Web Search"
    description = (
        "Search the web for current, real-time information on any topic. Use this for news, "
        "recent events, or facts that may have changed since your training."
    )
    category = ToolCategory.SEARCH
    parameters_schema = SEARCH_PARAMETERS

    async def run(self, **kwargs: Any) -> dict[str, Any]:
        query = str(kwargs["query"]).strip()
        limit = MAX_RESULTS * 2 if kwargs.get("search_depth") == "advanced" else MAX_RESULTS

        results = await asyncio.to_thread(
            lambda: DDGS().text(query, max_results=limit, backend="duckduckgo")
        )

        return {
            "success": True,
            "query": query,
            "answer": None,
            "results": [
                {
                    "title": r.get("title", ""),
                    "url": r.get("href", ""),
                    "content": (r.get("body") or "")[:SNIPPET_CHARS],
                    "score": None,
                }
                for r in results or []
            ],
        }
