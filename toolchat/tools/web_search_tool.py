"""Tavily web search tool."""

from __future__ import annotations

from typing import Any

import httpx

from toolchat.credentials import CredentialStore
from toolchat.models import ToolCategory
from toolchat.tools.base import Tool, failure

TAVILY_URL = "https://api.tavily.com/search"
MAX_RESULTS = 5
SNIPPET_CHARS = 500

SEARCH_PARAMETERS: dict[str, Any] = {
    "type": "object",
    "properties": {
        "query": {
            "type": "string",
            "description": "The search query. Be specific and include relevant keywords.",
        },
        "search_depth": {
            "type": "string",
            "description": 'Use "basic" for quick factual lookups, "advanced" for comprehensive research.',
            "enum": ["basic", "advanced"],
        },
    },
    "required": ["query"],
}


class TavilySearchTool(Tool):
    """Search the web using the Tavily API."""

    id = "web_search"
    name = "web_search"
    display_name = "Web Search"
    description = (
        "Search the web for current, real-time information on any topic. Use this for news, "
        "recent events, or facts that may have changed since your training."
    )
    category = ToolCategory.SEARCH
    credential_name = "tavily"
    parameters_schema = SEARCH_PARAMETERS

    def __init__(self, credentials: CredentialStore) -> None:
        self._credentials = credentials

    async def run(self, **kwargs: Any) -> dict[str, Any]:
        query = str(kwargs["query"]).strip()
        depth = kwargs.get("search_depth") or "basic"

        async with httpx.AsyncClient() as client:
            resp = await client.post(
                TAVILY_URL,
                json={
                    "api_key": self._credentials.get("tavily"),
                    "query": query,
                    "search_depth": depth,
                    "max_results": MAX_RESULTS,
                    "include_answer": True,
                },
                timeout=20.0,
            )
        if resp.status_code == 401:
            return failure("Invalid Tavily API key.")
        if resp.status_code == 429:
            return failure("Tavily rate limit exceeded. Wait before searching again.")
        if resp.status_code != 200:
            return failure(f"Search failed (HTTP {resp.status_code}).")

        data = resp.json()
        return {
            "success": True,
            "query": data.get("query", query),
            "answer": data.get("answer"),
            "results": [
                {
                    "title": item.get("title", ""),
                    "url": item.get("url", ""),
                    "content": (item.get("content") or "")[:SNIPPET_CHARS],
                    "score": item.get("score"),
                }
                for item in data.get("results", [])
            ],
            "response_time": data.get("response_time"),
        }
